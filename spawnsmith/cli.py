"""
spawnsmith - turn one sentence into a generated project.

    spawnsmith run "a CLI that renames photos by EXIF date"
    spawnsmith list
    spawnsmith show <spawn-id>
    spawnsmith cat <spawn-id> <path>
    spawnsmith delete <spawn-id>
"""
import argparse
import json
import logging
import os
import sys
from pathlib import Path
from typing import Any, Dict, Optional

from .config import load_spawn_config
from .service import SpawnService

EXIT_WORDS = {"", "exit", "quit", "q"}


def _load_dotenv() -> None:
    """Load KEY=VALUE lines from .env without overriding the environment."""
    env_path = Path('.').resolve() / '.env'
    if not env_path.exists():
        return
    for raw in env_path.read_text(encoding='utf-8', errors='ignore').splitlines():
        line = raw.strip()
        if not line or line.startswith('#'):
            continue
        if line.startswith('export '):
            line = line[len('export '):].strip()
        if '=' not in line:
            continue
        k, v = line.split('=', 1)
        k = k.strip()
        v = v.strip().strip('"').strip("'")
        if k and v and k not in os.environ:
            os.environ[k] = v


def _print_reply(reply: Dict[str, Any]) -> None:
    kind = reply.get("type")
    if kind == "summary":
        spec = reply.get("spec") or {}
        print(f"\n{spec.get('name')} ({spec.get('platform')})")
        for feature in spec.get("features", []):
            print(f"  - {feature}")
        print(f"\n{reply.get('text')}")
    elif kind == "build":
        print(f"\nBuild complete: {len(reply.get('files', []))} file(s)")
        for path in reply.get("files", []):
            print(f"  {path}")
        if reply.get("text"):
            print(f"\n{reply['text']}")
    elif kind == "error":
        print(f"\nError: {reply.get('text')}")
    else:
        print(f"\n[{kind}] {reply.get('text', '')}")


def _cmd_run(service: SpawnService, args: argparse.Namespace) -> int:
    session_id = service.open_session()
    token = service.config["session"]["approval_token"]
    reply = service.send(session_id, args.prompt)
    _print_reply(reply)
    if reply.get("type") == "summary" and args.yes:
        print(f"\n> {token}")
        reply = service.send(session_id, token)
        _print_reply(reply)

    while True:
        status = service.state(session_id).get("status")
        if status == "awaiting-approval":
            hint = f"Type '{token}' to build, or describe changes"
        else:
            hint = "Describe changes, or press Enter to finish"
        try:
            text = input(f"\n{hint}\n> ").strip()
        except EOFError:
            break
        if text.lower() in EXIT_WORDS:
            break
        _print_reply(service.send(session_id, text))

    final = service.state(session_id)
    if final.get("spawnId"):
        print(f"\nSpawn id: {final['spawnId']} ({final.get('status')})")
    service.shutdown()
    return 0 if final.get("status") != "failed" else 1


def _cmd_list(service: SpawnService, args: argparse.Namespace) -> int:
    spawns = service.list_spawns(limit=args.limit)
    if not spawns:
        print("No spawns yet.")
        return 0
    for spawn in spawns:
        print(f"{spawn['id']}  {spawn['status']:<8}  {spawn['platform']:<7}  {spawn['name']}  ({spawn['createdAt']})")
    return 0


def _cmd_show(service: SpawnService, args: argparse.Namespace) -> int:
    spawn = service.get_spawn(args.spawn_id)
    if spawn is None:
        print(f"Error: spawn '{args.spawn_id}' not found")
        return 1
    if args.json:
        print(json.dumps(spawn, indent=2))
        return 0
    print(f"{spawn['name']} [{spawn['status']}] - {spawn['description']}")
    print(f"Platform: {spawn['platform']}")
    print("Features:")
    for feature in spawn["features"]:
        print(f"  - {feature}")
    if spawn.get("error"):
        print(f"Error: {spawn['error']}")
    print("Files:")
    for f in service.list_files(args.spawn_id):
        print(f"  {f['path']}  ({f['size']} bytes)")
    return 0


def _cmd_cat(service: SpawnService, args: argparse.Namespace) -> int:
    content = service.read_file(args.spawn_id, args.path)
    if content is None:
        print(f"Error: {args.path} not found in spawn '{args.spawn_id}'")
        return 1
    sys.stdout.write(content)
    return 0


def _cmd_delete(service: SpawnService, args: argparse.Namespace) -> int:
    if not service.delete_spawn(args.spawn_id):
        print(f"Error: spawn '{args.spawn_id}' not found")
        return 1
    print(f"Deleted {args.spawn_id}")
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="spawnsmith", description="Generate a project from one sentence")
    parser.add_argument('-c', '--config', help='Path to a YAML config file (default: built-in defaults)')
    parser.add_argument('-m', '--model', help='Model id, e.g. openai/gpt-4o-mini or openrouter/<model>')
    parser.add_argument('--local', action='store_true', help='Run actors in-process instead of on Ray')
    parser.add_argument('--log-level', default='WARNING', help='Python logging level (default: WARNING)')
    sub = parser.add_subparsers(dest='command', required=True)

    run = sub.add_parser('run', help='Start a spawn conversation')
    run.add_argument('prompt', help='What to build')
    run.add_argument('-y', '--yes', action='store_true', help='Approve the first spec automatically')

    ls = sub.add_parser('list', help='List recent spawns')
    ls.add_argument('-n', '--limit', type=int, default=50)

    show = sub.add_parser('show', help='Show a spawn and its files')
    show.add_argument('spawn_id')
    show.add_argument('--json', action='store_true', help='Print the full record as JSON')

    cat = sub.add_parser('cat', help='Print one generated file')
    cat.add_argument('spawn_id')
    cat.add_argument('path')

    delete = sub.add_parser('delete', help='Delete a spawn and its files')
    delete.add_argument('spawn_id')
    return parser


COMMANDS = {
    "run": _cmd_run,
    "list": _cmd_list,
    "show": _cmd_show,
    "cat": _cmd_cat,
    "delete": _cmd_delete,
}


def main(argv: Optional[list] = None) -> int:
    args = build_parser().parse_args(argv)
    logging.basicConfig(level=getattr(logging, str(args.log_level).upper(), logging.WARNING),
                        format="%(asctime)s %(levelname)s %(name)s: %(message)s")
    _load_dotenv()

    overrides: Dict[str, Any] = {}
    if args.model:
        overrides["providers"] = {"default_model": args.model}
    try:
        config = load_spawn_config(args.config, overrides=overrides)
    except (OSError, ValueError) as e:
        print(f"Error: invalid configuration: {e}")
        return 1

    service = SpawnService(config, local_mode=True if args.local else None)
    try:
        return COMMANDS[args.command](service, args)
    except KeyboardInterrupt:
        print("\nOperation interrupted by user")
        return 130
