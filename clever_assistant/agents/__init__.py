# agents package
"""
Chat agent implementations.

Modules:
    - error_handling: Error kinds and the ChatResult contract
    - presets: Preset assistant modes
    - llm_client: LangChain-backed remote chat client
    - chatbot: Conversation context for one session
    - orchestrator: Request pipeline, assistant facade and session registry

Submodules are imported directly (e.g. ``from clever_assistant.agents.chatbot
import ConversationContext``); utils depends on error_handling and presets.
"""
