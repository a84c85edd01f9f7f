import asyncio
import sys

from dotenv import load_dotenv
from loguru import logger

from chat_history.app_config import load_json_config, parse_app_config, resolve_runtime_env
from chat_history.bootstrap import bootstrap_runtime


async def main() -> None:
    load_dotenv()

    try:
        app = parse_app_config(load_json_config(), resolve_runtime_env())
    except ValueError as ex:
        logger.error(f"Invalid configuration: {ex}")
        sys.exit(1)

    runtime = await bootstrap_runtime(app)
    console = runtime.console

    print("chat-history (type 'exit' to quit, '/help' for commands)")
    if runtime.memory_store is not None:
        print(f"Database: {runtime.memory_store.db_path}")
    else:
        print("Database: in-memory (not persisted)")
    print(f"Session: {console.active_session_id or 'new on first message'}")
    if runtime.prune_result is not None:
        print(
            f"Pruned: {runtime.prune_result.sessions_removed} session(s), "
            f"{runtime.prune_result.messages_removed} message(s)"
        )
    if runtime.log_descriptions:
        print(f"Logging: {', '.join(runtime.log_descriptions)}")
    print()

    try:
        while True:
            try:
                user_input = input("you> ")
            except (EOFError, KeyboardInterrupt):
                break

            trimmed = user_input.strip()

            if trimmed in ("exit", "quit"):
                break

            if not trimmed:
                continue

            try:
                await console.run(trimmed)
            except Exception as ex:
                logger.error(f"Unhandled error: {ex}")
    finally:
        runtime.close()


def run() -> None:
    asyncio.run(main())


if __name__ == "__main__":
    run()
