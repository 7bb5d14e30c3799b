#!/usr/bin/env python3
"""
CodeStream CLI - Main Entry Point

Usage:
    codestream replay response.txt                 # Replay a recorded response
    codestream replay batch1.txt batch2.txt        # Later files answer continuation batches
    codestream generate "create a todo app"        # Call Claude
    codestream --help                              # Show help
"""

import argparse
import asyncio
import json
import logging
import os
import signal
import sys
from typing import Dict, List, Optional

import aiofiles
from dotenv import load_dotenv
from rich.console import Console

from codestream import __version__
from codestream.cli.renderer import ProgressRenderer
from codestream.core.config import settings
from codestream.core.exceptions import StreamTransportError
from codestream.core.logging_config import logger
from codestream.modules.continuation.generator import CodeGenerator, GenerationResult
from codestream.modules.continuation.prompts import generation_instruction_for
from codestream.modules.continuation.request import GenerationRequest
from codestream.modules.streaming.completion_scheduler import ImmediateCompletionPolicy
from codestream.modules.streaming.types import FinishReason, WireFormat
from codestream.utils.chunk_streams import FileChunkStream


FORMAT_CHOICES = {
    "legacy": WireFormat.LEGACY_COMMENT_PLAN,
    "v2": WireFormat.MANIFEST_V2,
    "marker": WireFormat.DELIMITER_MARKER,
    "bare": WireFormat.BARE_COMMENT,
}

# Directories never read as existing project files
SKIPPED_DIRS = {"node_modules", ".git", "dist", "build", "__pycache__"}


class ReplayClient:
    """Answers each request with the next recorded response file"""

    def __init__(self, paths: List[str], chunk_size: int = 256, truncated: bool = False):
        self.paths = list(paths)
        self.chunk_size = chunk_size
        self.truncated = truncated
        self.calls = 0

    def open_stream(self, request: GenerationRequest) -> FileChunkStream:
        if self.calls >= len(self.paths):
            raise StreamTransportError(
                f"No recorded response for batch {request.batch_index}", retryable=False
            )
        path = self.paths[self.calls]
        self.calls += 1
        # Only the first recording is replayed as cut off
        finish_reason = FinishReason.LENGTH if self.truncated and self.calls == 1 else FinishReason.STOP
        logger.info(f"[Replay] Batch {request.batch_index} <- {path}")
        return FileChunkStream(path, chunk_size=self.chunk_size, finish_reason=finish_reason)


def create_parser() -> argparse.ArgumentParser:
    """Create argument parser for CLI"""
    parser = argparse.ArgumentParser(
        prog="codestream",
        description="CodeStream - incremental multi-file generation from streamed model output",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  codestream replay out.txt                      Stream a recorded response
  codestream replay out.txt --truncated          Treat it as cut off by the token limit
  codestream replay b1.txt b2.txt -o ./app       Replay a continuation and write files
  codestream generate "a React todo app" -o app  Generate with Claude
  codestream generate "add dark mode" -e ./app   Generate against existing files

Wire formats:
  legacy    // PLAN: {...} followed by a JSON file map
  v2        {"meta":..., "plan":..., "manifest":[...], "files":...}
  marker    <!-- FILE:path --> ... <!-- /FILE:path --> blocks
  bare      // path comment headers

Environment:
  ANTHROPIC_API_KEY, CLAUDE_MODEL and every other setting can be placed in .env
        """
    )

    parser.add_argument(
        "--version",
        action="version",
        version=f"%(prog)s {__version__}"
    )

    subparsers = parser.add_subparsers(dest="command", help="Commands")

    # Shared options
    common = argparse.ArgumentParser(add_help=False)
    common.add_argument(
        "-o", "--output",
        type=str,
        help="Write merged files into this directory"
    )
    common.add_argument(
        "-e", "--existing",
        type=str,
        help="Directory holding the current project files (merge context)"
    )
    common.add_argument(
        "-f", "--format",
        choices=sorted(FORMAT_CHOICES),
        help="Expected wire format (a different detected format is reported)"
    )
    common.add_argument(
        "--no-stagger",
        action="store_true",
        help="Complete files as soon as their content is complete"
    )
    common.add_argument(
        "--show",
        action="store_true",
        help="Print generated files with syntax highlighting"
    )
    common.add_argument(
        "--json",
        dest="json_output",
        action="store_true",
        help="Print the result summary as JSON instead of rendering progress"
    )
    common.add_argument(
        "-v", "--verbose",
        action="store_true",
        help="Enable verbose output"
    )

    replay_parser = subparsers.add_parser(
        "replay", parents=[common], help="Stream recorded responses through the pipeline"
    )
    replay_parser.add_argument("files", nargs="+", help="Recorded response files, one per batch")
    replay_parser.add_argument(
        "--chunk-size",
        type=int,
        default=256,
        help="Characters per replayed chunk (default: 256)"
    )
    replay_parser.add_argument(
        "--truncated",
        action="store_true",
        help="Report the first recording as cut off by the token limit"
    )

    generate_parser = subparsers.add_parser(
        "generate", parents=[common], help="Generate files with Claude"
    )
    generate_parser.add_argument("prompt", help="What to build")
    generate_parser.add_argument("-m", "--model", type=str, help="Claude model (default: CLAUDE_MODEL)")
    generate_parser.add_argument("--max-tokens", type=int, help="Output token limit per batch")
    generate_parser.add_argument("--system-prompt", type=str, help="Replace the default system prompt")
    generate_parser.add_argument(
        "--include-context",
        action="store_true",
        help="Send the existing files to the model along with the prompt"
    )

    return parser


async def read_project_files(directory: str) -> Dict[str, str]:
    """Text files under a directory, keyed by relative path"""
    files: Dict[str, str] = {}
    for root, dirs, names in os.walk(directory):
        dirs[:] = [d for d in dirs if d not in SKIPPED_DIRS]
        for name in names:
            path = os.path.join(root, name)
            relative = os.path.relpath(path, directory).replace(os.sep, "/")
            try:
                async with aiofiles.open(path, "r", encoding="utf-8") as f:
                    files[relative] = await f.read()
            except UnicodeDecodeError:
                logger.debug(f"[CLI] Skipping binary file: {relative}")
    return files


async def write_project_files(directory: str, files: Dict[str, str]) -> int:
    written = 0
    root = os.path.abspath(directory)
    for relative, content in files.items():
        path = os.path.abspath(os.path.join(root, relative))
        if os.path.commonpath([root, path]) != root:
            logger.warning(f"[CLI] Refusing to write outside output directory: {relative}")
            continue
        os.makedirs(os.path.dirname(path), exist_ok=True)
        async with aiofiles.open(path, "w", encoding="utf-8") as f:
            await f.write(content)
        written += 1
    return written


async def run_generation(args: argparse.Namespace, console: Console) -> GenerationResult:
    existing = await read_project_files(args.existing) if args.existing else {}
    expected_format: Optional[WireFormat] = FORMAT_CHOICES.get(args.format) if args.format else None
    policy = ImmediateCompletionPolicy() if args.no_stagger else None

    if args.command == "replay":
        client = ReplayClient(args.files, chunk_size=args.chunk_size, truncated=args.truncated)
        prompt = f"Replay of {', '.join(args.files)}"
        system_instruction = ""
    else:
        from codestream.utils.claude_client import ClaudeStreamClient
        client = ClaudeStreamClient(model=args.model)
        prompt = args.prompt
        system_instruction = args.system_prompt or generation_instruction_for(expected_format)

    renderer = ProgressRenderer(console)
    show_progress = not args.json_output
    generator = CodeGenerator(
        client,
        policy=policy,
        on_update=renderer.on_update if show_progress else None,
        on_batch=renderer.on_batch if show_progress else None,
    )

    loop = asyncio.get_running_loop()
    try:
        loop.add_signal_handler(signal.SIGINT, generator.cancel)
    except (NotImplementedError, RuntimeError):
        pass

    kwargs = dict(
        prompt=prompt,
        system_instruction=system_instruction,
        existing_files=existing,
        response_format=expected_format,
    )
    if args.command == "generate":
        kwargs.update(max_tokens=args.max_tokens, include_context=args.include_context)

    try:
        if show_progress:
            with renderer:
                result = await generator.generate(**kwargs)
        else:
            result = await generator.generate(**kwargs)
    finally:
        try:
            loop.remove_signal_handler(signal.SIGINT)
        except (NotImplementedError, RuntimeError):
            pass

    if args.output and result.files:
        written = await write_project_files(args.output, result.merged_files)
        if show_progress:
            console.print(f"[green]✓ Wrote {written} files to {args.output}[/green]")

    if args.json_output:
        console.print_json(json.dumps(result.to_dict()))
    else:
        renderer.render_result(result, result.files if args.show else None)
    return result


def main():
    """Main entry point"""
    load_dotenv()
    parser = create_parser()
    args = parser.parse_args()

    if not args.command:
        parser.print_help()
        sys.exit(1)

    if args.verbose:
        logger.setLevel(logging.DEBUG)
        for handler in logger.handlers:
            handler.setLevel(logging.DEBUG)

    console = Console()

    if args.command == "generate":
        if not settings.ANTHROPIC_API_KEY:
            console.print("\n[red]✗ ANTHROPIC_API_KEY is not set[/red]")
            console.print("Set it in the environment or in a .env file.")
            sys.exit(1)

    try:
        result = asyncio.run(run_generation(args, console))
    except KeyboardInterrupt:
        console.print("\n[yellow]Interrupted[/yellow]")
        sys.exit(130)

    sys.exit(0 if result.success else 1)


if __name__ == "__main__":
    main()
