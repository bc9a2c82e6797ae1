"""UGC Ad Factory — Entry Point.

Usage:
    # Analyze a product photo
    python main.py analyze --image product.jpg
    python main.py analyze --image front.jpg side.jpg --brand Lumbra --price 39.99

    # Customer research (single call, or the four-step pipeline)
    python main.py research --input research_input.json
    python main.py research --input research_input.json --multi-step

    # Build (and optionally run) a per-field prompt
    python main.py prompt script --input context.json --guidance "punchier"
    python main.py prompt hook --input context.json --generate

    # Split a script into 5-8 second segments
    python main.py chunk --script script.txt

    # Generate a QC'd image
    python main.py generate-image --prompt "..." --purpose character --reference product.jpg

    # Animate a still / synthesize a voice line
    python main.py animate --image frame.png --prompt "slow push-in"
    python main.py voice --text "Okay this actually works" --out line.mp3

    # Editing guide + timeline for finished clips (optionally rate each clip first)
    python main.py assemble --input assembly_input.json --review

    # Saved projects
    python main.py projects
"""

from __future__ import annotations

import argparse
import json
import logging
import sys
from pathlib import Path

from rich.console import Console
from rich.logging import RichHandler
from rich.panel import Panel
from rich.table import Table

import config
from pipeline import llm, storage
from pipeline.assembly import analyze_clip, assemble_edit
from pipeline.cancellation import CancelToken
from pipeline.content_generation import generate_content
from pipeline.errors import StageResult
from pipeline.image_generation import generate_image_with_qc
from pipeline.product_analysis import analyze_product
from pipeline.prompt_templates import build_prompt
from pipeline.providers import ProviderSet, build_providers, build_text_provider
from pipeline.quality_scorer import PromptCorrector, QualityScorer
from pipeline.research import ResearchSynthesisPipeline
from pipeline.script_chunker import chunk_script
from pipeline.video import animate_image
from schemas.assembly import ClipAsset
from schemas.generation import GenerationRequest
from schemas.quality import PurposeContext
from schemas.research import ProductAnalysis
from schemas.script import ScriptSegment

console = Console()


def setup_logging():
    logging.basicConfig(
        level=getattr(logging, config.LOG_LEVEL),
        format="%(message)s",
        handlers=[RichHandler(console=console, rich_tracebacks=True)],
    )


def _read_json(path_str: str | None) -> dict:
    if not path_str:
        return {}
    path = Path(path_str)
    if not path.exists():
        console.print(f"[red]Input file not found: {path}[/red]")
        sys.exit(1)
    return json.loads(path.read_text(encoding="utf-8"))


def _read_bytes(path_str: str) -> bytes:
    path = Path(path_str)
    if not path.exists():
        console.print(f"[red]File not found: {path}[/red]")
        sys.exit(1)
    return path.read_bytes()


def _save_output(name: str, data: object) -> Path:
    path = config.OUTPUT_DIR / name
    if isinstance(data, (bytes, bytearray)):
        path.write_bytes(data)
    else:
        path.write_text(json.dumps(data, indent=2, default=str), encoding="utf-8")
    return path


def _dump(value: object) -> object:
    if hasattr(value, "model_dump"):
        return value.model_dump(mode="json")
    if isinstance(value, list):
        return [_dump(v) for v in value]
    return value


def _report(result: StageResult) -> bool:
    if result.success:
        console.print(f"  [green]{result.stage} OK[/green] {('via ' + result.provider) if result.provider else ''}")
    else:
        kind = result.error_kind.value if result.error_kind else "error"
        console.print(f"  [red]{result.stage} FAILED ({kind}): {result.error_message}[/red]")
    for note in result.diagnostics:
        console.print(f"  [yellow]- {note}[/yellow]")
    return result.success


def _load_product(inputs: dict) -> ProductAnalysis | None:
    raw = inputs.get("product_analysis")
    if raw is None:
        saved = config.OUTPUT_DIR / "product_analysis.json"
        if saved.exists():
            raw = json.loads(saved.read_text(encoding="utf-8"))
            console.print("  [dim]Loaded product analysis from disk[/dim]")
    return ProductAnalysis.model_validate(raw) if raw else None


def _load_documents(inputs: dict) -> list[str]:
    docs: list[str] = []
    for item in inputs.get("documents") or []:
        path = Path(str(item))
        docs.append(path.read_text(encoding="utf-8") if path.suffix and path.exists() else str(item))
    return docs


def print_usage():
    summary = llm.get_usage_summary()
    if not summary["calls"]:
        return
    table = Table(title="Usage")
    table.add_column("Provider", style="cyan")
    table.add_column("Cost", style="green")
    for provider, cost in sorted(summary["by_provider"].items()):
        table.add_row(provider, f"${cost:.4f}")
    table.add_row("[bold]total[/bold]", f"[bold]${summary['total_cost']:.4f}[/bold]")
    console.print(table)


# ---------------------------------------------------------------------------
# Commands
# ---------------------------------------------------------------------------

def run_analyze(args, providers: ProviderSet, cancel: CancelToken) -> bool:
    images = [_read_bytes(path) for path in args.image]
    context = {
        "brand_name": args.brand,
        "price": args.price,
        "product_url": args.url,
        "additional_info": args.info,
    }
    result = analyze_product(images, providers.vision, cancel=cancel, context=context)
    if result.success:
        path = _save_output("product_analysis.json", _dump(result.value))
        console.print(f"  [green]Output saved:[/green] {path}")
    return _report(result)


def run_research(args, providers: ProviderSet, cancel: CancelToken) -> bool:
    inputs = _read_json(args.input)
    pipeline = ResearchSynthesisPipeline(providers.structured, search=providers.search)
    product = _load_product(inputs)
    documents = _load_documents(inputs)
    audience = inputs.get("target_audience", "")

    console.print(
        Panel(
            "[bold cyan]CUSTOMER RESEARCH[/bold cyan]\n"
            + ("Multi-step: community → reviews → avatar → angles" if args.multi_step else "Single-call synthesis"),
            border_style="bright_blue",
        )
    )
    if args.multi_step:
        result = pipeline.run_multi_step(
            product, documents, audience, product_name=inputs.get("product_name", ""), cancel=cancel
        )
        if result.value is not None:
            table = Table(title="Research Steps")
            table.add_column("Step", style="cyan")
            table.add_column("Source")
            table.add_column("Time", style="green")
            table.add_column("Status", style="bold")
            for step in result.value.steps:
                status = "[green]OK[/green]" if step.status == "complete" else f"[red]FAILED: {step.error[:50]}[/red]"
                table.add_row(step.step, step.source or "-", f"{step.duration_seconds:.1f}s", status)
            console.print(table)
    else:
        result = pipeline.synthesize(product, documents, audience, cancel=cancel)

    if result.value is not None:
        path = _save_output("research_brief.json", _dump(result.value))
        console.print(f"  [green]Output saved:[/green] {path}")
    return _report(result)


def run_prompt(args, providers: ProviderSet, cancel: CancelToken) -> bool:
    context = _read_json(args.input)
    if not args.generate:
        pair = build_prompt(args.content_type, context, args.guidance)
        console.print(Panel(pair.system_prompt, title="system", border_style="dim"))
        console.print(Panel(pair.user_prompt, title="user", border_style="cyan"))
        return True

    request = GenerationRequest(
        content_type=args.content_type,
        mode="iterate" if args.current else "fresh",
        context=context,
        guidance=args.guidance,
        current_value=Path(args.current).read_text(encoding="utf-8") if args.current else None,
    )
    result = generate_content(request, providers.text, providers.iterate_text, cancel=cancel)
    if result.success:
        console.print(Panel(result.value, title=result.stage, border_style="green"))
    return _report(result)


def run_chunk(args, providers: ProviderSet, cancel: CancelToken) -> bool:
    script = Path(args.script).read_text(encoding="utf-8")
    result = chunk_script(script, None if args.no_model else providers.script_structured, cancel=cancel)
    if result.success:
        table = Table(title="Segments")
        table.add_column("#", style="cyan")
        table.add_column("Type")
        table.add_column("Sec", style="green")
        table.add_column("Text")
        for seg in result.value:
            table.add_row(str(seg.index), seg.type, f"{seg.duration_estimate_seconds:.0f}", seg.text)
        console.print(table)
        path = _save_output("segments.json", _dump(result.value))
        console.print(f"  [green]Output saved:[/green] {path}")
    return _report(result)


def run_generate_image(args, providers: ProviderSet, cancel: CancelToken) -> bool:
    scorer = QualityScorer(providers.vision)
    result = generate_image_with_qc(
        args.prompt,
        image_provider=providers.image,
        scorer=scorer,
        corrector=PromptCorrector(providers.iterate_text),
        reference_images=[_read_bytes(p) for p in args.reference or []],
        aspect_ratio=args.aspect_ratio,
        purpose=PurposeContext(purpose=args.purpose, camera_view=args.camera_view, product_name=args.product or ""),
        max_retries=args.max_retries,
        qc_enabled=not args.no_qc,
        cancel=cancel,
    )
    if result.success:
        outcome = result.value
        path = _save_output(args.out or "image.png", outcome.result.payload)
        console.print(
            f"  [green]Saved:[/green] {path} (score {outcome.assessment.score}, "
            f"{outcome.attempts} attempt(s), {outcome.accepted_reason})"
        )
    return _report(result)


def run_animate(args, providers: ProviderSet, cancel: CancelToken) -> bool:
    source: bytes | str = args.image if args.image.startswith(("http://", "https://")) else _read_bytes(args.image)
    result = animate_image(
        providers.video,
        image=source,
        motion_prompt=args.prompt,
        duration_seconds=args.duration,
        cancel=cancel,
    )
    if result.success:
        console.print(f"  [green]Video:[/green] {result.value.result_url}")
    return _report(result)


def run_voice(args, providers: ProviderSet, cancel: CancelToken) -> bool:
    result = providers.speech.synthesize(text=args.text, voice_id=args.voice or "", cancel=cancel)
    if not result.success:
        console.print(f"  [red]voice FAILED: {result.error_message}[/red]")
        return False
    path = _save_output(args.out, result.payload)
    console.print(f"  [green]Saved:[/green] {path}")
    return True


def _load_segments(inputs: dict) -> list[ScriptSegment]:
    raw = inputs.get("segments")
    if raw is None:
        saved = config.OUTPUT_DIR / "segments.json"
        if saved.exists():
            raw = json.loads(saved.read_text(encoding="utf-8"))
            console.print("  [dim]Loaded segments from disk[/dim]")
    return [ScriptSegment.model_validate(seg) for seg in raw or []]


def run_assemble(args, providers: ProviderSet, cancel: CancelToken) -> bool:
    inputs = _read_json(args.input)
    segments = _load_segments(inputs)
    clips = []
    for item in inputs.get("clips") or []:
        frame_path = item.get("frame")
        clips.append(
            ClipAsset(
                segment=item["segment"],
                kind=item.get("kind", "aroll"),
                video_url=item.get("video_url", ""),
                frame=_read_bytes(frame_path) if frame_path else None,
            )
        )

    ok = True
    if args.review:
        by_index = {seg.index: seg.text for seg in segments}
        table = Table(title="Clip Review")
        table.add_column("Clip", style="cyan")
        table.add_column("Rating", style="green")
        table.add_column("Notes")
        for clip in clips:
            if not clip.frame:
                continue
            review = analyze_clip(clip.frame, clip.kind, by_index.get(clip.segment, ""), providers.vision, cancel=cancel)
            label = f"{clip.kind} / segment {clip.segment}"
            if review.success:
                flag = " [red](regenerate)[/red]" if review.value.needs_regeneration else ""
                table.add_row(label, f"{review.value.rating}/10{flag}", review.value.notes[:80])
            else:
                table.add_row(label, "-", f"[red]{review.error_message[:80]}[/red]")
                ok = False
        console.print(table)

    result = assemble_edit(
        segments,
        clips,
        vision=providers.vision,
        text_provider=build_text_provider("assembly"),
        product=_load_product(inputs),
        has_voiceover=bool(inputs.get("has_voiceover")),
        cancel=cancel,
    )
    if result.value is not None:
        plan = result.value
        if plan.timeline:
            console.print(Panel(plan.timeline, title="Timeline", border_style="cyan"))
        path = _save_output("assembly_plan.json", _dump(plan))
        console.print(f"  [green]Output saved:[/green] {path}")
    return _report(result) and ok


def run_projects(args) -> bool:
    storage.init_db()
    table = Table(title="Projects")
    table.add_column("ID", style="cyan")
    table.add_column("Name")
    table.add_column("Version", style="green")
    table.add_column("Updated")
    for row in storage.list_projects(limit=args.limit):
        table.add_row(row["project_id"], row["name"], str(row["version"]), row["updated_at"])
    console.print(table)
    return True


COMMANDS = {
    "analyze": run_analyze,
    "research": run_research,
    "prompt": run_prompt,
    "chunk": run_chunk,
    "generate-image": run_generate_image,
    "animate": run_animate,
    "voice": run_voice,
    "assemble": run_assemble,
}


def main():
    parser = argparse.ArgumentParser(
        description="UGC Ad Factory — research, prompts, QC'd images, video and voice",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument("--timeout", type=float, help="Abort the command after this many seconds")
    subparsers = parser.add_subparsers(dest="command", help="Command to run")

    analyze = subparsers.add_parser("analyze", help="Analyze a product image")
    analyze.add_argument("--image", required=True, nargs="+", help="Path(s) to product images; several angles of one product")
    analyze.add_argument("--brand", help="Brand name")
    analyze.add_argument("--price", help="Retail price")
    analyze.add_argument("--url", help="Product page URL")
    analyze.add_argument("--info", help="Anything else the analyst should know")

    research = subparsers.add_parser("research", help="Build the customer research brief")
    research.add_argument("--input", "-i", help="JSON with product_name, product_analysis, documents, target_audience")
    research.add_argument("--multi-step", action="store_true", help="Run the four-step research pipeline")

    prompt = subparsers.add_parser("prompt", help="Build or run a per-field prompt")
    prompt.add_argument("content_type", help="description, audience, script, hook, character, broll, segment, refine")
    prompt.add_argument("--input", "-i", help="JSON context file")
    prompt.add_argument("--guidance", "-g", help="Extra direction for the model")
    prompt.add_argument("--generate", action="store_true", help="Call the model instead of printing the prompt")
    prompt.add_argument("--current", help="Text file with the current value (iterate mode)")

    chunk = subparsers.add_parser("chunk", help="Split a script into 5-8 second segments")
    chunk.add_argument("--script", required=True, help="Path to script text file")
    chunk.add_argument("--no-model", action="store_true", help="Use the deterministic sentence packer only")

    image = subparsers.add_parser("generate-image", help="Generate an image with the QC loop")
    image.add_argument("--prompt", required=True, help="Image prompt")
    image.add_argument("--purpose", default="character", help="character, broll or general")
    image.add_argument("--camera-view", default="", help="selfie or third-person")
    image.add_argument("--product", help="Product name (for QC context)")
    image.add_argument("--reference", action="append", help="Reference image path (repeatable)")
    image.add_argument("--aspect-ratio", default="9:16")
    image.add_argument("--max-retries", type=int, help="QC retry budget (default from config)")
    image.add_argument("--no-qc", action="store_true", help="Skip vision scoring")
    image.add_argument("--out", help="Output filename under outputs/")

    animate = subparsers.add_parser("animate", help="Image-to-video for a still")
    animate.add_argument("--image", required=True, help="Image path or URL")
    animate.add_argument("--prompt", required=True, help="Motion prompt")
    animate.add_argument("--duration", type=int, default=5, choices=[5, 10])

    voice = subparsers.add_parser("voice", help="Text-to-speech for a line")
    voice.add_argument("--text", required=True)
    voice.add_argument("--voice", help="Voice ID (default from config)")
    voice.add_argument("--out", default="voice.mp3", help="Output filename under outputs/")

    assemble = subparsers.add_parser("assemble", help="Editing guide and timeline from finished clips")
    assemble.add_argument("--input", "-i", help="JSON with segments, clips [{segment, kind, frame, video_url}], has_voiceover")
    assemble.add_argument("--review", action="store_true", help="Rate each clip frame against its script line first")

    projects = subparsers.add_parser("projects", help="List saved projects")
    projects.add_argument("--limit", type=int, default=50)

    args = parser.parse_args()

    if not args.command:
        parser.print_help()
        sys.exit(0)

    setup_logging()

    console.print(
        Panel(
            "[bold]UGC AD FACTORY[/bold]\n"
            "Research → Prompts → QC'd Frames → Video",
            border_style="bright_magenta",
        )
    )

    if args.command == "projects":
        ok = run_projects(args)
    else:
        llm.reset_usage()
        providers = build_providers()
        cancel = CancelToken(args.timeout)
        try:
            ok = COMMANDS[args.command](args, providers, cancel)
        except KeyboardInterrupt:
            cancel.cancel("interrupted")
            console.print("[red]Interrupted[/red]")
            ok = False
        print_usage()

    sys.exit(0 if ok else 1)


if __name__ == "__main__":
    main()
