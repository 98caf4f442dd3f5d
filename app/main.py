import argparse
from dataclasses import replace
import logging
from pathlib import Path

from app.config import get_settings
from app.database import build_session_factory
from app.pipeline import PipelineFailedError, PipelineRunner


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Classify, deduplicate, store and export customer records")
    parser.add_argument("--input", required=False, help="Customer file to process (defaults to INPUT_PATH)")
    parser.add_argument("--output-dir", required=False, help="Directory for batch files (defaults to OUTPUT_DIR)")
    return parser.parse_args()


def main() -> None:
    args = parse_args()
    settings = get_settings()
    if args.input:
        settings = replace(settings, input_path=args.input)
    if args.output_dir:
        settings = replace(settings, output_dir=args.output_dir)

    logging.basicConfig(
        level=getattr(logging, settings.log_level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s %(message)s",
    )

    Path(settings.output_dir).mkdir(parents=True, exist_ok=True)
    session_factory = build_session_factory(settings.database_url)
    runner = PipelineRunner(settings, session_factory)
    try:
        result = runner.run()
    except PipelineFailedError as exc:
        print(f"status=failed error={exc}")
        raise SystemExit(1) from exc
    finally:
        runner.shutdown()

    print(
        "status={status} total={total} valid={valid} invalid={invalid} malformed={malformed} failed_units={failed}".format(
            status=result.status,
            total=result.total_lines,
            valid=result.valid_records,
            invalid=result.invalid_records,
            malformed=result.malformed_records,
            failed=",".join(unit.name for unit in result.failed_units) or "none",
        )
    )


if __name__ == "__main__":
    main()
