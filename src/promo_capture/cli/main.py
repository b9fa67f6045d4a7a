from __future__ import annotations

import argparse
import json
import os
import sys
from typing import Optional, Sequence

from ..config import load_platform_catalog, load_settings
from ..domain.classifier import PlatformClassifier
from ..domain.errors import AggregationFailure, EngineFailure
from ..logging import get_logger, set_level
from ..metadata.fields import FieldExtractor
from ..orchestrator.flow import PromotionPipeline, build_engines, build_pipeline_context
from ..orchestrator.transcribe import TextExtractor
from ..paths import expand_abs

LOG = get_logger("cli-main")


def _print_json(obj) -> None:
    print(json.dumps(obj, ensure_ascii=False, indent=2))


def _read_text(ns: argparse.Namespace) -> Optional[str]:
    """Return --text, or OCR the --source image."""
    if ns.text:
        return ns.text
    settings = load_settings(os.getcwd())
    extractor = TextExtractor(build_engines(settings))
    try:
        return extractor.extract(expand_abs(ns.source)).text
    except EngineFailure as exc:
        LOG.error(str(exc))
        return None


def _add_text_source(p: argparse.ArgumentParser) -> None:
    group = p.add_mutually_exclusive_group(required=True)
    group.add_argument("--text", help="Recognized text to analyse (skips OCR)")
    group.add_argument("--source", help="Screenshot to OCR first")


def _handle_process(ns: argparse.Namespace) -> int:
    settings = load_settings(os.getcwd())
    context = build_pipeline_context(settings, start_embedder=not ns.no_store)
    pipeline = PromotionPipeline(context)
    paths = [expand_abs(p) for p in ns.image]
    try:
        result = pipeline.process(paths, ns.platform_id, store=not ns.no_store)
    except AggregationFailure as exc:
        LOG.error(str(exc))
        return 1
    _print_json(result.as_dict())
    return 3 if result.persistence_error else 0


def _handle_classify(ns: argparse.Namespace) -> int:
    text = _read_text(ns)
    if text is None:
        return 1
    settings = load_settings(os.getcwd())
    classifier = PlatformClassifier(load_platform_catalog(settings.repo_root), settings.weights)
    match = classifier.classify(text)
    out = match.as_dict()
    if ns.verbose:
        out["scores"] = [
            {"code": s.signature.code, "confidence": round(s.confidence, 2), "score": s.score, "urlHit": s.url_hit}
            for s in classifier.score_all(text)
        ]
    _print_json(out)
    return 0


def _handle_fields(ns: argparse.Namespace) -> int:
    text = _read_text(ns)
    if text is None:
        return 1
    _print_json(FieldExtractor().extract(text).as_dict())
    return 0


def _handle_similar(ns: argparse.Namespace) -> int:
    settings = load_settings(os.getcwd())
    context = build_pipeline_context(settings)
    results = context.index.find_similar(ns.query, ns.limit, platform_id=ns.platform_id)
    _print_json(
        [
            {
                "id": rec.id,
                "similarity": round(sim, 4),
                "platformId": rec.platform_id,
                "extractedData": rec.extracted_data,
                "createdAt": rec.created_at,
            }
            for rec, sim in results
        ]
    )
    return 0


def _handle_catalog(_: argparse.Namespace) -> int:
    settings = load_settings(os.getcwd())
    catalog = load_platform_catalog(settings.repo_root)
    _print_json([{"code": sig.code, "name": sig.name} for sig in catalog])
    return 0


def main(argv: Sequence[str] | None = None) -> int:
    provided = list(argv) if argv is not None else sys.argv[1:]
    LOG.debug(f"CLI invoked with arguments: {provided}")

    parser = argparse.ArgumentParser(
        prog="promo-capture",
        description="Extract promotion activity data from merchant portal screenshots.",
    )
    parser.add_argument("--log-level", default=None, help="Override LOG_LEVEL for this run (debug, info, warning, ...)")
    subparsers = parser.add_subparsers(dest="command", required=True)

    process = subparsers.add_parser(
        "process",
        help="OCR, classify, merge and index screenshots of one promotion.",
    )
    process.add_argument("--image", action="append", required=True, help="Screenshot path (repeatable, in order)")
    process.add_argument("--platform-id", type=int, default=None, help="Platform/account identifier for the record")
    process.add_argument("--no-store", action="store_true", help="Skip writing the vector record")
    process.set_defaults(handler=_handle_process)

    classify = subparsers.add_parser("classify", help="Detect the merchant platform of a text or screenshot.")
    _add_text_source(classify)
    classify.add_argument("--verbose", action="store_true", help="Include per-platform scores")
    classify.set_defaults(handler=_handle_classify)

    fields = subparsers.add_parser("fields", help="Extract promotion fields from a text or screenshot.")
    _add_text_source(fields)
    fields.set_defaults(handler=_handle_fields)

    similar = subparsers.add_parser("similar", help="Find stored records similar to a query text.")
    similar.add_argument("--query", required=True)
    similar.add_argument("--limit", type=int, default=5)
    similar.add_argument("--platform-id", type=int, default=None)
    similar.set_defaults(handler=_handle_similar)

    catalog = subparsers.add_parser("catalog", help="List the active platform catalog.")
    catalog.set_defaults(handler=_handle_catalog)

    args = parser.parse_args(provided)
    if args.log_level:
        set_level(args.log_level)
    code = args.handler(args)
    LOG.info(f"Subcommand '{args.command}' finished with exit code {code}.")
    return code


if __name__ == "__main__":
    sys.exit(main())
