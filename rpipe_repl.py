import asyncio
import sys
from pathlib import Path

from rpipe.rpipe_datatypes import RSessionError
from rpipe.rpipe_runtime import RSessions, ALL, RPIPE_VERSION

VERSION = ".".join(str(n) for n in RPIPE_VERSION)

# A basic awaitable input prompt.
async def ainput(prompt: str) -> str:
    loop = asyncio.get_running_loop()
    sys.stdout.write(prompt)
    sys.stdout.flush()
    return await loop.run_in_executor(None, sys.stdin.readline)

async def run_script_file(file_path: str, sessions: RSessions = None):
    """Send every non-blank line of an R file to a fresh session; exit 1 on error."""
    p = Path(file_path)
    try:
        source = p.read_text(encoding="utf-8")
    except FileNotFoundError:
        print(f"Error: file not found: {file_path}", file=sys.stderr)
        raise SystemExit(1)
    sessions = sessions or RSessions()
    try:
        await sessions.open()
        for line in source.splitlines():
            if not line.strip():
                continue
            await sessions.send(line)
    except RSessionError as e:
        print(e.format_error(), file=sys.stderr)
        raise SystemExit(1)
    finally:
        await sessions.close(ALL)

async def main(argv=None, sessions: RSessions = None):
    """Run an R file when provided, otherwise start the interactive console."""
    argv = sys.argv[1:] if argv is None else argv
    if argv and not argv[0].startswith("-"):
        await run_script_file(argv[0], sessions)
        return

    print(f"rpipe console v{VERSION}")
    print("Type 'exit' or press Ctrl+D to quit.")

    sessions = sessions or RSessions()
    try:
        await sessions.open()
    except RSessionError as e:
        print(e.format_error(), file=sys.stderr)
        raise SystemExit(1)

    try:
        while True:
            try:
                raw = await ainput("R> ")
                if raw == "":
                    raise EOFError
                line = raw.strip()

                if not line:
                    continue
                if line == "exit":
                    break

                await sessions.send(line)

            except EOFError:
                print("\nExiting.")
                break
            except RSessionError as e:
                print(e.format_error(), file=sys.stderr)
                if not sessions.current_sessions():
                    # The slave is gone and its policy did not bring it back.
                    await sessions.open()
    finally:
        await sessions.close(ALL)

def cli():
    try:
        asyncio.run(main())
    except KeyboardInterrupt:
        print("\nExiting.")

if __name__ == "__main__":
    cli()
