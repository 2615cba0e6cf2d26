import sys

from clever_assistant.agents.error_handling import ConfigInvalid, UnknownMode
from clever_assistant.agents.orchestrator import CleverAssistant
from clever_assistant.utils.config import load_config, setup_logging


def print_status(assistant: CleverAssistant) -> None:
    status = assistant.get_status()
    print("\n--- Status ---")
    print(f"Mode: {status['mode_name']} ({status['mode']})")
    print(f"Rounds: {status['conversation']['rounds']}")
    print(f"Requests: {status['tokens']['total_requests']}")
    print(f"Total tokens: {status['tokens']['total_tokens']:,}")
    print(f"Current cost: ${status['budget']['current_cost']:.6f} "
          f"of ${status['budget']['budget_limit']:.2f}")
    print(f"Cache hit rate: {status['cache']['hit_rate']}%")
    print("--------------")


def handle_command(assistant: CleverAssistant, line: str) -> bool:
    """Run a slash command. Returns False when the loop should stop."""
    parts = line.split(maxsplit=1)
    command = parts[0].lower()
    argument = parts[1].strip() if len(parts) > 1 else ""

    if command in ("/quit", "/exit"):
        return False
    if command == "/help":
        for item in assistant.get_help()["commands"]:
            print(f"  {item['command']:<14} {item['description']}")
    elif command == "/status":
        print_status(assistant)
    elif command == "/mode" and not argument:
        for mode in assistant.get_available_modes():
            marker = "*" if mode["id"] == assistant.current_mode.mode_id else " "
            print(f" {marker} {mode['id']:<12} {mode['name']}")
    elif command == "/mode":
        try:
            preset = assistant.switch_mode(argument)
            print(f"Switched to {preset.display_name}")
        except UnknownMode as e:
            print(str(e))
    elif command == "/clear":
        assistant.clear_history()
        print("History cleared.")
    elif command == "/save":
        paths = assistant.save()
        print(f"Conversation: {paths['conversation']}")
        print(f"Call records: {paths['tokens']}")
    elif command == "/report":
        report = assistant.get_detailed_report()
        summary = report["tokens"]["summary"]
        print(f"Requests: {summary['total_requests']}, tokens: {summary['total_tokens']:,}, "
              f"cost: ${summary['total_cost']:.6f}")
        for model, stats in report["tokens"]["by_model"].items():
            print(f"  {model}: {stats['calls']} calls, ${stats['cost']:.6f}")
        print(f"Cache: {report['cache']['size']}/{report['cache']['max_size']} entries")
    elif command == "/reset":
        assistant.reset()
        print("Session reset.")
    else:
        print(f"Unknown command: {command} (type /help)")
    return True


def main():
    print("--- Clever Assistant ---")

    try:
        config = load_config()
    except ConfigInvalid as e:
        print(str(e))
        sys.exit(1)

    setup_logging(config)
    assistant = CleverAssistant(config)
    print(f"Model: {config.summary()['model']}, mode: {assistant.current_mode.display_name}")
    print("Type /help for commands, /quit to exit.")

    while True:
        try:
            line = input("\nYou: ").strip()
        except (EOFError, KeyboardInterrupt):
            break
        if not line:
            continue
        if line.startswith("/"):
            if not handle_command(assistant, line):
                break
            continue

        print("Assistant: ", end="", flush=True)
        for event in assistant.stream_message(line):
            if event.kind == "delta":
                print(event.text, end="", flush=True)
            elif event.kind == "error":
                print(f"\nError: {event.error}")
            elif event.kind == "done" and event.result.from_cache:
                print("\n(cached)", end="")
        print()

    print("Goodbye.")


if __name__ == "__main__":
    main()
