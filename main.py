"""AI Chronicle - launcher.

    python main.py serve [--host H] [--port P] [--reload]   run the API
    python main.py check                                     probe + live key test
    python main.py play [--echo] [--data-dir DIR]            play in the terminal
"""

import argparse
import asyncio
import logging
import os
import sys
import textwrap
from pathlib import Path

import httpx
from dotenv import load_dotenv

ROOT = Path(__file__).parent
load_dotenv(ROOT / ".env")

HOST = os.getenv("HOST", "0.0.0.0")
PORT = os.getenv("PORT", "13013")


def serve(args: argparse.Namespace) -> int:
    import uvicorn

    print(f"Starting API on http://localhost:{args.port} ...")
    uvicorn.run("backend.app:app", host=args.host, port=int(args.port), reload=args.reload)
    return 0


async def _ping_anthropic(settings) -> bool:
    from ai_chronicle.errors import ChronicleError
    from ai_chronicle.llm import AnthropicLLM
    from ai_chronicle.models import ModelRequest

    llm = AnthropicLLM(
        api_key=settings.anthropic_api_key,
        model=settings.model,
        max_tokens=20,
        base_url=settings.anthropic_base_url,
        timeout=30,
    )
    request = ModelRequest(
        system="You are a connectivity check.",
        prompt='Respond with exactly: "API test successful"',
        intent="continue",
        turn=0,
    )
    try:
        reply = await llm(request)
    except ChronicleError as e:
        print(f"  Anthropic: FAILED ({e.category}) {e.message}")
        if e.hint:
            print(f"    hint: {e.hint}")
        return False
    print(f"  Anthropic: ok ({reply.strip()[:60]})")
    return True


async def _ping_openai(settings) -> bool:
    url = f"{settings.openai_base_url.rstrip('/')}/v1/models"
    headers = {"Authorization": f"Bearer {settings.openai_api_key}"}
    try:
        async with httpx.AsyncClient(timeout=10) as client:
            resp = await client.get(url, headers=headers)
            resp.raise_for_status()
    except httpx.HTTPError as e:
        print(f"  OpenAI: FAILED {e}")
        return False
    print(f"  OpenAI: ok ({len(resp.json().get('data', []))} models available)")
    return True


def check(args: argparse.Namespace) -> int:
    from ai_chronicle.config import load_settings
    from ai_chronicle.health import check_availability

    settings = load_settings()
    report = check_availability(settings)
    for name, key in report.checks.model_dump().items():
        print(f"  {name}: {key['format']} (length {key['length']})")
    print(f"Status: {report.status}" + (f" - {report.message}" if report.message else ""))
    if report.status == "error":
        return 1

    ok = asyncio.run(_ping_anthropic(settings))
    if settings.openai_api_key:
        asyncio.run(_ping_openai(settings))
    else:
        print("  OpenAI: skipped (optional, illustrations disabled)")
    return 0 if ok else 1


def _show(result) -> None:
    response = result.response
    if response.image_url:
        print(f"\n[illustration] {response.image_url}")
    if response.text:
        print()
        for paragraph in response.text.split("\n\n"):
            if paragraph.strip():
                print(textwrap.fill(paragraph.strip(), width=78))
                print()


async def _play(args: argparse.Namespace) -> int:
    from ai_chronicle.config import load_settings
    from ai_chronicle.errors import ChronicleError
    from ai_chronicle.illustrations import OpenAIImages
    from ai_chronicle.llm import AnthropicLLM, EchoLLM
    from ai_chronicle.prompts import load_prompts
    from ai_chronicle.session import ChronicleSession
    from ai_chronicle.storage import SaveStore

    settings = load_settings()
    if args.data_dir:
        settings.data_dir = args.data_dir
    if args.echo:
        llm, illustrator = EchoLLM(), None
    else:
        llm = AnthropicLLM.from_settings(settings)
        illustrator = OpenAIImages.from_settings(settings) if settings.openai_api_key else None

    session = ChronicleSession(
        llm,
        illustrator=illustrator,
        settings=settings,
        prompts=load_prompts(settings.prompts_file),
        store=SaveStore(settings.data_dir),
        check_credentials=not args.echo,
    )

    try:
        result = await session.start()
    except ChronicleError as e:
        print(f"Cannot start: {e.message}")
        if e.hint:
            print(f"  {e.hint}")
        return 1

    while True:
        _show(result)
        action = result.action
        print(f"-- Chapter {session.state.chapter_number} · {session.state.protagonist.name or 'Unknown'}")

        if action.kind == "show_death":
            if action.death_message:
                print(textwrap.fill(action.death_message, width=78))
            print("\nYour story has ended.")
            command = input("[n]ew chronicle or [q]uit? ").strip().lower()
        elif action.kind == "await_dice_roll":
            print(f"Roll needed: {action.roll_reason or 'fate'} - chance {round(action.probability * 100)}%")
            command = input("[r]oll, [s]ave, [l]oad, [q]uit: ").strip().lower()
        elif action.kind == "present_choices":
            for number, choice in enumerate(action.choices, start=1):
                odds = f" ({round(choice.probability * 100)}%)" if choice.probability is not None else ""
                print(f"  {number}. {choice.text}{odds}")
            command = input("Choose a number, or [s]ave, [l]oad, [q]uit: ").strip().lower()
        else:
            await asyncio.sleep(action.delay_seconds)
            command = "c"

        try:
            if command == "q":
                return 0
            elif command == "n":
                result = await session.start()
            elif command == "s":
                session.save()
                print("Chronicle saved.")
            elif command == "l":
                if not session.load():
                    print("No saved chronicle found.")
                else:
                    print("Chronicle loaded.")
                    result = await session.resume()
            elif command == "r" and action.kind == "await_dice_roll":
                success, result = await session.roll_dice()
                print("\n*** SUCCESS ***" if success else "\n*** FAILURE ***")
            elif command == "c":
                result = await session.continue_story()
            elif command.isdigit() and action.kind == "present_choices":
                index = int(command) - 1
                if 0 <= index < len(action.choices):
                    result = await session.choose(action.choices[index].id)
        except ChronicleError as e:
            print(f"Error: {e.message}")
            if e.hint:
                print(f"  {e.hint}")


def play(args: argparse.Namespace) -> int:
    return asyncio.run(_play(args))


def main() -> int:
    parser = argparse.ArgumentParser(description="AI Chronicle launcher")
    parser.add_argument("-v", "--verbose", action="store_true", help="Debug logging")
    sub = parser.add_subparsers(dest="command", required=True)

    p_serve = sub.add_parser("serve", help="Run the HTTP API with uvicorn")
    p_serve.add_argument("--host", default=HOST)
    p_serve.add_argument("--port", default=PORT)
    p_serve.add_argument("--reload", action="store_true", help="Reload on code changes")
    p_serve.set_defaults(func=serve)

    p_check = sub.add_parser("check", help="Check API keys and reach both vendors")
    p_check.set_defaults(func=check)

    p_play = sub.add_parser("play", help="Play a chronicle in the terminal")
    p_play.add_argument("--echo", action="store_true",
                        help="Offline: echo prompts instead of calling the model")
    p_play.add_argument("--data-dir", type=Path, default=None,
                        help="Save directory (default: DATA_DIR or ./data)")
    p_play.set_defaults(func=play)

    args = parser.parse_args()
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    return args.func(args)


if __name__ == "__main__":
    sys.exit(main())
