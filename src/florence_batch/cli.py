from __future__ import annotations

import argparse
import json
import os
from pathlib import Path
from typing import Iterable, Optional

from dotenv import load_dotenv
from pydantic import ValidationError
from tqdm import tqdm

from florence_batch.cropping import RegionExtractor
from florence_batch.errors import DestinationNotSelected
from florence_batch.logging import get_logger
from florence_batch.pipeline import BatchRunner, InferenceEngine, SingleImageSession
from florence_batch.reader import index_images, iter_images
from florence_batch.schemas import OUTPUT_FORMATS, TASKS, BatchSummary, ProgressEvent, RunConfig
from florence_batch.tabular import dumps_pretty, load_detection_records
from florence_batch.writer import ResultWriter, create_writer

load_dotenv()

logger = get_logger(__name__)


def prompt_destination(kind: str, suggested: str) -> Path | None:
    """Ask on the terminal for an output path; an empty answer, EOF or Ctrl-C cancels."""
    hint = f" [{suggested}]" if suggested else ""
    try:
        answer = input(f"Output {kind}{hint}: ").strip()
    except (EOFError, KeyboardInterrupt):
        return None
    if not answer:
        return None
    return Path(answer)


def load_engine(model: str, device: str, max_new_tokens: int) -> InferenceEngine:
    # torch/transformers are only needed once a model is actually loaded
    from florence_batch.florence import Florence2Model

    return Florence2Model(model, device=device, max_new_tokens=max_new_tokens)


def _add_model_args(p: argparse.ArgumentParser) -> None:
    p.add_argument(
        "--model", default=os.getenv("FLORENCE_BATCH_MODEL", "microsoft/Florence-2-base-ft")
    )
    p.add_argument("--device", default=os.getenv("FLORENCE_BATCH_DEVICE", "auto"))
    p.add_argument(
        "--max-new-tokens",
        type=int,
        default=int(os.getenv("FLORENCE_BATCH_MAX_NEW_TOKENS", "128")),
    )


# ----------------------- Batch subcommand -----------------------
def _add_batch_parser(sub: argparse._SubParsersAction) -> None:
    p = sub.add_parser(
        "batch",
        help="Run one Florence-2 task over many images, streaming results to disk",
    )
    p.add_argument("--input", required=True, help="Input folder or a text file with image paths")
    p.add_argument("--task", default="<OD>", choices=TASKS)
    p.add_argument("--text", default=None, help="Text input for <CAPTION_TO_PHRASE_GROUNDING>")
    p.add_argument("--format", default="json", choices=OUTPUT_FORMATS)
    p.add_argument(
        "--out",
        default=None,
        help="Output file (json/csv) or directory (individual); prompted for when omitted",
    )
    p.add_argument("--limit", type=int, default=None, help="Process at most this many images")
    _add_model_args(p)
    p.set_defaults(command="batch")


def _run_batch(args: argparse.Namespace) -> int:
    try:
        cfg = RunConfig(
            input=args.input,
            task=args.task,
            text=args.text,
            format=args.format,
            out=args.out,
            limit=args.limit,
            model=args.model,
            device=args.device,
            max_new_tokens=args.max_new_tokens,
        )
    except ValidationError as e:
        logger.error(f"invalid arguments: {e}")
        return 2
    try:
        items = list(iter_images(cfg.input, limit=cfg.limit))
    except FileNotFoundError as e:
        logger.error(str(e))
        return 2
    logger.info(f"found {len(items)} images")

    try:
        writer = create_writer(cfg.format, cfg.task, destination=cfg.out, picker=prompt_destination)
    except DestinationNotSelected:
        logger.info("no output selected; nothing to do")
        return 1

    with writer:
        engine = load_engine(cfg.model, cfg.device, cfg.max_new_tokens)
        summary = _drive(engine, items, cfg, writer)
    logger.info(
        f"done. processed={summary.processed_count} failed={summary.failed_count} "
        f"time={summary.total_elapsed_time / 1000:.1f}s"
    )
    return 0


def _drive(
    engine: InferenceEngine, items: list, cfg: RunConfig, writer: ResultWriter
) -> BatchSummary:
    with tqdm(total=len(items), desc="batch", unit="img") as pbar:

        def _on_progress(ev: ProgressEvent) -> None:
            pbar.n = ev.current - 1
            pbar.set_postfix_str(ev.filename)
            pbar.refresh()

        runner = BatchRunner(engine, on_progress=_on_progress)
        summary = runner.run(items, cfg.task, writer, text=cfg.text)
        pbar.n = len(items)
        pbar.refresh()
    return summary


# ----------------------- Single subcommand -----------------------
def _add_single_parser(sub: argparse._SubParsersAction) -> None:
    p = sub.add_parser(
        "single",
        help="Run one or more tasks on a single image and print the results as JSON",
        description="Vision inputs are computed once and reused for every --task given.",
    )
    p.add_argument("--image", required=True)
    p.add_argument("--task", action="append", choices=TASKS, help="Repeatable; default <CAPTION>")
    p.add_argument("--text", default=None)
    _add_model_args(p)
    p.set_defaults(command="single")


def _run_single(args: argparse.Namespace) -> int:
    if not os.path.isfile(args.image):
        logger.error(f"image not found: {args.image}")
        return 2
    engine = load_engine(args.model, args.device, args.max_new_tokens)
    session = SingleImageSession(engine)
    session.load(args.image)
    out = [session.run(task, args.text).record() for task in (args.task or ["<CAPTION>"])]
    print(dumps_pretty(out[0] if len(out) == 1 else out))
    return 0


# ----------------------- Crop subcommand -----------------------
def _add_crop_parser(sub: argparse._SubParsersAction) -> None:
    p = sub.add_parser(
        "crop",
        help="Crop detections from a CSV/JSON export into one folder per source image",
    )
    p.add_argument("--detections", required=True, help="CSV or JSON file of detection records")
    p.add_argument("--images", required=True, help="Folder or list file with the source images")
    p.add_argument("--out", default=None, help="Output folder; prompted for when omitted")
    p.set_defaults(command="crop")


def _run_crop(args: argparse.Namespace) -> int:
    try:
        records = load_detection_records(args.detections)
        images = index_images(args.images)
    except FileNotFoundError as e:
        logger.error(str(e))
        return 2
    except json.JSONDecodeError as e:
        logger.error(f"could not parse {args.detections}: {e}")
        return 2
    if not records:
        logger.error("detections file is empty or invalid")
        return 2

    out_dir = Path(args.out) if args.out else prompt_destination("directory", "")
    if out_dir is None:
        logger.info("no output selected; nothing to do")
        return 1

    with tqdm(desc="crop", unit="img") as pbar:

        def _on_progress(current: int, total: int, message: str) -> None:
            pbar.total = total
            pbar.n = current
            pbar.set_postfix_str(message)
            pbar.refresh()

        stats = RegionExtractor(out_dir, on_progress=_on_progress).extract(records, images)

    if stats.saved == 0 and stats.failed == 0:
        logger.warning(
            "no crops generated: check that image filenames match the detections, "
            "or whether every detection was filtered out (score < 0.5)"
        )
    logger.info(f"done. crops under {out_dir}: saved={stats.saved} failed={stats.failed} skipped={stats.skipped}")
    return 0


def parse_args(argv: Optional[Iterable[str]] = None) -> argparse.Namespace:
    p = argparse.ArgumentParser(prog="florence-batch")
    sub = p.add_subparsers(dest="command")
    sub.required = True

    _add_batch_parser(sub)
    _add_single_parser(sub)
    _add_crop_parser(sub)

    return p.parse_args(list(argv) if argv is not None else None)


def main(argv: Optional[Iterable[str]] = None) -> int:
    args = parse_args(argv)
    cmd = getattr(args, "command", None)
    if cmd == "batch":
        return _run_batch(args)
    if cmd == "single":
        return _run_single(args)
    if cmd == "crop":
        return _run_crop(args)
    logger.error(f"unknown command: {cmd}")
    return 2


if __name__ == "__main__":
    raise SystemExit(main())
