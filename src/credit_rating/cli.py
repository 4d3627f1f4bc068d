"""Credit rating CLI.

Usage:
    python -m credit_rating score --template PATH --selections PATH --customer-type new|existing
    python -m credit_rating classify SCORE
    python -m credit_rating check-weights --template PATH
    python -m credit_rating serve [--host HOST] [--port PORT]

Template files hold template content ({"name": ..., "categories": [...]});
selection files map question_id to the selected answer_id.

Exit codes:
    0: Success
    1: Invalid input, validation failure, or weight-sum issues found
"""

from __future__ import annotations

import argparse
import json
import sys
from decimal import Decimal, InvalidOperation
from typing import Any

from credit_rating.errors import CreditRatingError, ValidationError
from credit_rating.logging_config import configure_logging
from credit_rating.models.assessment import round_for_display
from credit_rating.models.template import CustomerType, TemplateContent
from credit_rating.scoring.engine import compute_scores
from credit_rating.scoring.rating import classify
from credit_rating.scoring.weights import find_weight_sum_issues


def _output_json(data: dict[str, Any]) -> None:
    """Output JSON to stdout with deterministic ordering."""
    print(json.dumps(data, sort_keys=True, indent=2, default=str))


def _error(code: str, message: str, details: dict[str, Any] | None = None) -> int:
    _output_json({"error": {"code": code, "message": message, "details": details or {}}})
    return 1


def _load_json_file(path: str) -> Any:
    """Load a JSON document.

    Raises:
        ValidationError: If the file is missing, unreadable, or not JSON.
    """
    try:
        with open(path, encoding="utf-8") as f:
            return json.load(f)
    except FileNotFoundError:
        raise ValidationError(f"File not found: {path}", details={"path": path}) from None
    except json.JSONDecodeError as e:
        raise ValidationError(f"Invalid JSON in {path}: {e}", details={"path": path}) from None
    except OSError as e:
        raise ValidationError(f"Cannot read {path}: {e}", details={"path": path}) from None


def _load_template(path: str) -> TemplateContent:
    data = _load_json_file(path)
    if not isinstance(data, dict):
        raise ValidationError("Template file must hold a JSON object", details={"path": path})
    # Accept stored template exports too; only content fields are scored
    content = {"name": data.get("name"), "categories": data.get("categories")}
    return TemplateContent.from_payload(content)


def cmd_score(args: argparse.Namespace) -> int:
    """Score a selection map against a template file."""
    template = _load_template(args.template)
    selections = _load_json_file(args.selections)
    if not isinstance(selections, dict):
        raise ValidationError(
            "Selections file must map question_id to answer_id",
            details={"path": args.selections},
        )

    result = compute_scores(template, args.customer_type, selections)
    _output_json(
        {
            "template": template.name,
            "customer_type": result.customer_type.value,
            "category_scores": [
                {
                    "category_id": c.category_id,
                    "category_name": c.category_name,
                    "score": str(round_for_display(c.score)),
                }
                for c in result.category_scores
            ],
            "total_score": str(result.display_total()),
            "rating": result.rating.value,
        }
    )
    return 0


def cmd_classify(args: argparse.Namespace) -> int:
    """Print the rating band for a score."""
    try:
        score = Decimal(args.score)
    except InvalidOperation:
        raise ValidationError(
            f"Not a number: {args.score!r}", details={"field": "score"}
        ) from None
    print(classify(score).value)
    return 0


def cmd_check_weights(args: argparse.Namespace) -> int:
    """Report weight-sum issues of a template file; exit 1 if any."""
    template = _load_template(args.template)
    issues = find_weight_sum_issues(template)
    _output_json({"template": template.name, "issues": issues, "pass": not issues})
    return 1 if issues else 0


def cmd_serve(args: argparse.Namespace) -> int:
    """Run the HTTP API with uvicorn."""
    import uvicorn

    uvicorn.run(
        "credit_rating.api.main:create_app",
        factory=True,
        host=args.host,
        port=args.port,
    )
    return 0


def create_parser() -> argparse.ArgumentParser:
    """Create the argument parser."""
    parser = argparse.ArgumentParser(
        prog="credit-rating",
        description="Credit rating scoring and service CLI",
    )
    parser.add_argument("--log-level", default=None, help="Overrides CREDIT_RATING_LOG_LEVEL")

    subparsers = parser.add_subparsers(dest="command", help="Commands")

    score_parser = subparsers.add_parser("score", help="Score answer selections")
    score_parser.add_argument("--template", required=True, metavar="PATH")
    score_parser.add_argument("--selections", required=True, metavar="PATH")
    score_parser.add_argument(
        "--customer-type",
        required=True,
        choices=[c.value for c in CustomerType],
    )
    score_parser.set_defaults(handler=cmd_score)

    classify_parser = subparsers.add_parser("classify", help="Rating band for a score")
    classify_parser.add_argument("score", metavar="SCORE")
    classify_parser.set_defaults(handler=cmd_classify)

    weights_parser = subparsers.add_parser(
        "check-weights",
        help="Check that question weights sum to 100 per customer type",
    )
    weights_parser.add_argument("--template", required=True, metavar="PATH")
    weights_parser.set_defaults(handler=cmd_check_weights)

    serve_parser = subparsers.add_parser("serve", help="Run the HTTP API")
    serve_parser.add_argument("--host", default="127.0.0.1")
    serve_parser.add_argument("--port", type=int, default=8000)
    serve_parser.set_defaults(handler=cmd_serve)

    return parser


def main(argv: list[str] | None = None) -> int:
    """Main entry point."""
    parser = create_parser()
    args = parser.parse_args(argv)
    configure_logging(args.log_level)

    if args.command is None:
        parser.print_help()
        return 0

    try:
        return int(args.handler(args))
    except CreditRatingError as e:
        return _error(e.code, e.message, e.details)


if __name__ == "__main__":
    sys.exit(main())
