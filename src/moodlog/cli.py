"""CLI entry point for Moodlog."""

import asyncio
import json
import sys
from pathlib import Path
from typing import Optional

import click
from rich.console import Console

from moodlog import __version__
from moodlog.config import ConfigManager
from moodlog.llm.client import LLMClient
from moodlog.llm.exceptions import LLMError
from moodlog.llm.prompts import build_messages
from moodlog.llm.streaming import reassemble_transcript
from moodlog.models.stream import Channel, StreamToken
from moodlog.services.committer import PersistenceCommitter
from moodlog.services.extraction import extract_json_candidate
from moodlog.services.forwarder import CallbackSink
from moodlog.services.json_repair import parse_json_object
from moodlog.services.pipeline import GenerationPipeline, new_request_id
from moodlog.services.scenarios import SCENARIOS, get_scenario
from moodlog.services.storage import InMemoryEntryStore
from moodlog.utils.logging import configure_logging, get_logger


logger = get_logger(__name__)
console = Console()
err_console = Console(stderr=True)


def load_config() -> ConfigManager:
    """
    Load configuration from $MOODLOG_CONFIG or ~/.config/moodlog/config.yaml.

    Raises:
        click.ClickException: If config is missing, has invalid permissions, or validation fails
    """
    try:
        return ConfigManager.load_default()
    except (FileNotFoundError, PermissionError) as e:
        raise click.ClickException(str(e))
    except ValueError as e:
        raise click.ClickException(f"Configuration validation failed:\n{e}")


def extract_payload(text: str, ndjson: bool) -> Optional[dict]:
    """
    Run extraction and repair over a saved transcript.

    Args:
        text: Raw model content, or captured NDJSON output of a talk endpoint
        ndjson: Treat ``text`` as line-protocol output and reassemble it first

    Returns:
        Parsed payload, or None when no JSON object could be recovered
    """
    content = reassemble_transcript(text).content if ndjson else text

    extraction = extract_json_candidate(content)
    if extraction is None:
        return None

    payload = parse_json_object(extraction.candidate, request_id="cli")
    return payload or None


@click.group()
@click.version_option(version=__version__, prog_name="moodlog")
def cli():
    """Moodlog: streaming journal analysis with an LLM."""
    configure_logging()


@cli.command()
@click.option("--host", default=None, help="Bind address (default from config)")
@click.option("--port", type=int, default=None, help="Port (default from config)")
@click.option("--memory", is_flag=True, help="Keep records in memory instead of data_dir")
def serve(host: Optional[str], port: Optional[int], memory: bool):
    """Run the HTTP API server."""
    import uvicorn

    from moodlog.api.app import create_app

    config = load_config()
    store = InMemoryEntryStore() if memory else None
    app = create_app(config=config, store=store)

    host = host or config.server.host
    port = port or config.server.port
    logger.info("serve_command_started", host=host, port=port, memory=memory)
    click.echo(f"Serving Moodlog API on http://{host}:{port}/api")

    uvicorn.run(app, host=host, port=port)


@cli.command()
@click.argument("file", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.option("--ndjson", is_flag=True, help="FILE holds captured line-protocol output")
def extract(file: Path, ndjson: bool):
    """
    Recover the JSON payload from a saved model transcript.

    Examples:
        moodlog extract answer.txt
        moodlog extract --ndjson captured-stream.ndjson
    """
    logger.info("extract_command_started", file=str(file), ndjson=ndjson)

    payload = extract_payload(file.read_text(encoding="utf-8"), ndjson)
    if payload is None:
        logger.warning("extract_command_no_payload", file=str(file))
        click.echo("Error: no JSON object could be recovered", err=True)
        sys.exit(1)

    click.echo(json.dumps(payload, indent=2, ensure_ascii=False))


@cli.command()
@click.argument("prompt")
@click.option(
    "--scenario",
    type=click.Choice(sorted(SCENARIOS)),
    default="deeper",
    show_default=True,
    help="Scenario whose system prompt and model are used",
)
@click.option("--show-reasoning", is_flag=True, help="Print reasoning tokens (dimmed)")
def stream(prompt: str, scenario: str, show_reasoning: bool):
    """
    Stream a completion for PROMPT and print tokens as they arrive.

    For scenarios that answer in JSON the recovered payload is printed at the end.
    """
    config = load_config()
    selected = get_scenario(scenario)

    def print_line(line: str) -> None:
        token = StreamToken.from_line(line)
        if token.channel == Channel.REASONING:
            if show_reasoning:
                console.print(token.text, style="dim", end="", markup=False, highlight=False)
        else:
            console.print(token.text, end="", markup=False, highlight=False)

    async def run_stream():
        pipeline = GenerationPipeline(
            LLMClient(config.llm),
            PersistenceCommitter(InMemoryEntryStore()),
            config.llm,
            config.pipeline,
        )
        request_id = new_request_id()
        upstream = await pipeline.open(
            selected, build_messages(selected.system_prompt, prompt), request_id
        )
        sink = CallbackSink(print_line)
        result = await pipeline.run(upstream, selected, None, sink, request_id)
        return result, sink

    try:
        result, sink = asyncio.run(run_stream())
    except LLMError as e:
        raise click.ClickException(str(e))

    console.print()
    if sink.error is not None:
        err_console.print(f"Stream ended with an error: {sink.error}", style="red")

    if selected.persists:
        payload = extract_payload(result.content, ndjson=False)
        if payload is None:
            err_console.print("No JSON object could be recovered", style="yellow")
        else:
            console.print_json(json.dumps(payload, ensure_ascii=False))


def main():
    """Main entry point for setuptools console script."""
    cli()


if __name__ == "__main__":
    main()
