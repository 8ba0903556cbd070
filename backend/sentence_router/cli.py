"""CLI interface for the sentence router."""

import argparse
import asyncio
import logging
import sys
from typing import List, Optional

from sentence_router.models.endpoint import AnalysisResponse
from sentence_router.services.pipeline_errors import PipelineError
from sentence_router.services.sentence_service import SentenceService, error_envelope

logger = logging.getLogger(__name__)


def main(argv: Optional[List[str]] = None) -> int:
    parser = argparse.ArgumentParser(
        prog="sentence-router",
        description="Match a sentence to a catalog endpoint, or run the HTTP server when no sentence is given",
    )
    parser.add_argument("sentence", nargs="?", default=None, help="Sentence to analyze (omit to start the server)")
    parser.add_argument("--email", default=None, help="Caller identity (default: DEFAULT_EMAIL)")
    parser.add_argument("--client-id", default="cli", help="Client id used in logs (default: cli)")
    parser.add_argument("--config", default=None, help="Path to config.yaml (default: CONFIG_PATH or backend/config.yaml)")
    parser.add_argument("--host", default=None, help="Server host (default: API_HOST or 0.0.0.0)")
    parser.add_argument("--port", type=int, default=None, help="Server port (default: API_PORT or 8000)")
    parser.add_argument("--verbose", "-v", action="store_true", help="Verbose logging")

    args = parser.parse_args(argv)

    from sentence_router.main import build_service, run_server, setup_global_color_logging

    if args.verbose:
        setup_global_color_logging("DEBUG")

    if args.sentence is None:
        run_server(args.host, args.port)
        return 0

    try:
        service = build_service(args.config)
    except PipelineError as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        return 2

    return asyncio.run(_cmd_analyze(service, args.sentence, args.email, args.client_id))


async def _cmd_analyze(service: SentenceService, sentence: str, email: Optional[str], client_id: str) -> int:
    """Run one analysis and print the result."""
    try:
        response = await service.analyze(sentence, email, client_id)
    except Exception as e:
        envelope = error_envelope(e)
        print(f"Error [{envelope.status}]: {envelope.message}", file=sys.stderr)
        return 1
    finally:
        await service.aclose()

    print(format_response(response))
    return 0


def format_response(response: AnalysisResponse) -> str:
    lines = [
        f"Endpoint: {response.endpoint_id}",
        f"Description: {response.endpoint_description}",
        "Parameters:",
    ]
    for p in response.parameters:
        value = p.value if p.value is not None else "<unresolved>"
        lines.append(f"  {p.name}: {value}")
    lines.append(f"Raw JSON: {response.json_output}")
    return "\n".join(lines)


if __name__ == "__main__":
    sys.exit(main())
