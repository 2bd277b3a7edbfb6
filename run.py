from __future__ import annotations

import argparse
import logging
import time
from pathlib import Path
from typing import Callable, List, Optional, Sequence, Tuple

import numpy as np
import requests
from dotenv import load_dotenv
from tqdm import tqdm

from bgedit.config import DEFAULT_BLUR_RADIUS, DEFAULT_BORDER_COLOR, DEFAULT_BORDER_SIZE, DEFAULT_MODEL_SPEC
from bgedit.contracts import EffectConfig, ProgressEvent
from bgedit.errors import BgEditError
from bgedit.io import Upload, decode_image, fetch_image, iter_images, load_image
from bgedit.remover import MattingRemover, SegmentationWorker
from bgedit.session import EditorSession

# (display name, path relative to the input dir or None for URLs, loader)
Source = Tuple[str, Optional[Path], Callable[[], Upload]]


def build_config(args: argparse.Namespace) -> EffectConfig:
    config = EffectConfig()
    if args.background == "original":
        config = config.with_effect("background", True, use_original=True)
    elif args.background:
        config = config.with_effect("background", True, color=args.background)
    if args.blur is not None:
        config = config.with_effect("blur", True, radius_px=args.blur)
    if args.border_size is not None:
        config = config.with_effect("border", True, size_px=args.border_size, color=args.border_color)
    if args.bw:
        config = config.with_effect("bw", True)
    return config



def collect_sources(input_dir: Optional[Path], urls: Sequence[str]) -> List[Source]:
    sources: List[Source] = []
    if input_dir is not None:
        for p in iter_images(input_dir):
            sources.append((p.name, p.relative_to(input_dir), lambda p=p: load_image(str(p))))
    for url in urls:
        sources.append((url, None, lambda url=url: fetch_image(url)))
    return sources


def foreground_for(rel: Path, foreground_dir: Path) -> np.ndarray:
    """
    Load an already background-removed PNG. These are pipeline intermediates, not
    user uploads, so the upload size/type contract does not apply.
    """
    candidate = (foreground_dir / rel).with_suffix(".png")
    if not candidate.is_file():
        raise FileNotFoundError(f"Foreground not found for {rel.name}: {candidate}")
    return decode_image(candidate.read_bytes())


def main(argv: Optional[Sequence[str]] = None) -> int:
    load_dotenv()

    parser = argparse.ArgumentParser(description="Remove backgrounds and apply editor effects to a directory of images.")
    parser.add_argument("--input", default=None, type=str, help="Input directory containing images.")
    parser.add_argument("--url", action="append", default=[], help="Image URL to process (repeatable).")
    parser.add_argument("--output", required=True, type=str, help="Output directory for rendered PNGs.")
    parser.add_argument(
        "--foreground-dir",
        type=str,
        default=None,
        help="Directory of already background-removed PNGs (same relative paths); skips the model.",
    )
    parser.add_argument("--model", default=DEFAULT_MODEL_SPEC, type=str, help="'hf:<repo>' or a TorchScript file path.")
    parser.add_argument("--background", default=None, type=str, help="Background colour, or 'original'. Omit for transparent.")
    parser.add_argument("--blur", nargs="?", const=DEFAULT_BLUR_RADIUS, default=None, type=float, help="Blur the background (px).")
    parser.add_argument("--border-size", nargs="?", const=DEFAULT_BORDER_SIZE, default=None, type=float, help="Outline size (px).")
    parser.add_argument("--border-color", default=DEFAULT_BORDER_COLOR, type=str, help="Outline colour.")
    parser.add_argument("--bw", action="store_true", help="Desaturate the background.")
    parser.add_argument("--verbose", action="store_true", help="Debug logging.")
    args = parser.parse_args(argv)
    if not args.input and not args.url:
        parser.error("one of --input or --url is required")

    logging.basicConfig(level=logging.DEBUG if args.verbose else logging.WARNING)

    input_dir = Path(args.input) if args.input else None
    output_dir = Path(args.output)
    foreground_dir = Path(args.foreground_dir) if args.foreground_dir else None
    if input_dir is not None and not input_dir.exists():
        raise FileNotFoundError(f"Input dir not found: {input_dir}")

    sources = collect_sources(input_dir, args.url)
    if not sources:
        print(f"No images found under {input_dir}")
        return 0

    config = build_config(args)
    session = EditorSession(SegmentationWorker(MattingRemover(args.model)))
    session.config = config

    failures = 0
    total0 = time.perf_counter()
    for name, rel, load in tqdm(sources, desc="Processing", unit="img"):
        t0 = time.perf_counter()
        try:
            upload = load()
            if foreground_dir is not None and rel is not None:
                session.use_foreground(upload, foreground_for(rel, foreground_dir))
            else:
                with tqdm(total=100, desc=upload.filename or name, unit="%", leave=False) as bar:

                    def _on_progress(event, bar=bar):
                        if isinstance(event, ProgressEvent):
                            bar.n = event.progress
                            bar.set_postfix_str(event.phase)
                            bar.refresh()

                    unsubscribe = session.worker.subscribe(_on_progress)
                    try:
                        session.open(upload)
                        session.wait()
                    finally:
                        unsubscribe()
        except (BgEditError, FileNotFoundError, requests.RequestException) as e:
            failures += 1
            print(f"{name}: FAILED ({type(e).__name__}: {e})")
            continue

        artifact = session.artifact
        out_dir = output_dir / rel.parent if rel is not None else output_dir
        artifact.save(str(out_dir / artifact.filename))

        timings = session.pipeline.last_timings
        stages = " ".join(f"{stage}={secs:.3f}s" for stage, secs in timings.stages_s.items())
        print(
            f"{name}: total={time.perf_counter() - t0:.3f}s "
            f"(render={timings.total_s:.3f}s {stages} encode={timings.encode_s:.3f}s)"
        )

    session.close()
    total1 = time.perf_counter()
    print(f"Done. {len(sources) - failures}/{len(sources)} images in {total1 - total0:.2f}s")
    return 1 if failures else 0


if __name__ == "__main__":
    raise SystemExit(main())
