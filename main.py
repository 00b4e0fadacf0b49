"""Main Entry Point for the RAG report generator

This script drives the workspace service from the command line:
- Creates workspaces and uploads local documents into them.
- Ingests new uploads into the workspace vector index.
- Generates or modifies report sections and exports the HTML report.
- Runs the FastAPI server.

Usage:
  python main.py --mode create   --workspace acme
  python main.py --mode ingest   --workspace acme --files docs/brief.pdf docs/notes.txt
  python main.py --mode generate --workspace acme
  python main.py --mode modify   --workspace acme --sections "Project Objective" --instructions "Shorter"
  python main.py --mode export   --workspace acme --output acme.html
  python main.py --mode api      # Start FastAPI server (default)

Configuration comes from environment variables / .env (see ragreport.core.config).
"""

import argparse
import asyncio
import sys
from pathlib import Path

from ragreport.core.config import get_settings
from ragreport.core.errors import RagReportError
from ragreport.workspaces.workspaces import WorkspaceService


async def create_workspace(service: WorkspaceService, args: argparse.Namespace) -> bool:
    await service.create_workspace(args.workspace)
    print(f"Workspace '{args.workspace}' created.")
    return True


async def ingest(service: WorkspaceService, args: argparse.Namespace) -> bool:
    """Upload the given local files (if any), then ingest every new upload."""
    for path in args.files or []:
        outcome = await service.upload(args.workspace, Path(path).name, Path(path).read_bytes())
        label = "duplicate, skipped" if outcome['duplicate'] else "uploaded"
        print(f"{outcome['fileName']}: {label}")

    report = await service.ingest(args.workspace)
    print(f"Processed {len(report.processed)} files ({report.chunks_added} chunks).")
    for file_name in report.skipped:
        print(f"Skipped {file_name}: {report.reasons[file_name]}")
    return True


async def generate(service: WorkspaceService, args: argparse.Namespace) -> bool:
    async for event in service.stream_generation(args.workspace):
        if event['type'] == 'result':
            result = event['result']
            print(f"[{result['section']} #{result['iteration_number']}]\n{result['answer']}\n")
        elif event['type'] == 'done':
            print(f"Generated {event['count']} sections.")
        else:
            print(f"Generation failed: {event['message']}", file=sys.stderr)
            return False
    return True


async def modify(service: WorkspaceService, args: argparse.Namespace) -> bool:
    records = await service.modify(args.workspace, args.sections or [], args.instructions or "")
    for record in records:
        print(f"[{record.section} #{record.iteration_number}]\n{record.answer}\n")
    print(f"Modified {len(records)} sections.")
    return True


async def export(service: WorkspaceService, args: argparse.Namespace) -> bool:
    html = await service.export_html(args.workspace)
    output = Path(args.output or f"results_{args.workspace}.html")
    output.write_text(html, encoding='utf-8')
    print(f"Report written to {output}")
    return True


COMMANDS = {
    'create': create_workspace,
    'ingest': ingest,
    'generate': generate,
    'modify': modify,
    'export': export,
}


def run_api() -> bool:
    """Run FastAPI server."""
    import uvicorn
    uvicorn.run("ragreport.api.api:app", host="0.0.0.0", port=8000, reload=True)
    return True


def run_command(args: argparse.Namespace) -> bool:
    if not args.workspace:
        print(f"--workspace is required for mode '{args.mode}'", file=sys.stderr)
        return False

    async def _run() -> bool:
        service = WorkspaceService.from_settings(get_settings())
        try:
            return await COMMANDS[args.mode](service, args)
        finally:
            await service.drain()

    try:
        return asyncio.run(_run())
    except RagReportError as exc:
        print(f"Error: {exc}", file=sys.stderr)
        return False


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="RAG report generator")
    parser.add_argument("--mode", choices=[*COMMANDS, "api"], default="api",
                        help="Mode: workspace operation or run the API")
    parser.add_argument("--workspace", help="Target workspace name")
    parser.add_argument("--files", nargs="*", help="Local documents to upload before ingesting")
    parser.add_argument("--sections", nargs="*", help="Sections to modify")
    parser.add_argument("--instructions", help="Extra instructions for modify")
    parser.add_argument("--output", help="Export file path")

    args = parser.parse_args()

    success = run_api() if args.mode == "api" else run_command(args)
    sys.exit(0 if success else 1)
