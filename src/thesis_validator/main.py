"""
Main entry point for the Thesis Validator research engine.
"""

import argparse
import asyncio
import json
import logging
import sys
from uuid import UUID

from thesis_validator.config import get_settings
from thesis_validator.db.session import UnitOfWork, create_engine, create_session_factory, init_db
from thesis_validator.errors import ThesisValidatorError
from thesis_validator.metrics.aggregator import MetricsAggregator
from thesis_validator.orchestrator import JobType, ResearchOrchestrator
from thesis_validator.providers.market_data import AlphaVantageProvider
from thesis_validator.providers.reasoning import OllamaReasoningProvider

logger = logging.getLogger(__name__)


def setup_logging() -> None:
    """Configure application logging."""
    settings = get_settings()
    logging.basicConfig(
        level=getattr(logging, settings.log_level),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        handlers=[logging.StreamHandler(sys.stdout)],
    )


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="thesis-validator")
    sub = parser.add_subparsers(dest="command", required=True)

    sub.add_parser("init-db", help="Create database tables")

    worker = sub.add_parser("worker", help="Run queued jobs")
    worker.add_argument("--concurrency", type=int, default=None, help="Worker tasks")
    worker.add_argument(
        "--once",
        action="store_true",
        help="Drain the queued jobs and exit instead of waiting for new ones",
    )

    submit = sub.add_parser("submit", help="Submit a research or stress-test job")
    submit.add_argument("engagement_id", type=UUID)
    submit.add_argument("--type", choices=[t.value for t in JobType], default=JobType.RESEARCH.value)
    submit.add_argument("--thesis", help="Investment thesis (research jobs)")
    submit.add_argument("--depth", choices=["quick", "standard", "deep"], default="standard")
    submit.add_argument("--ticker", help="Ticker symbol for market data enrichment")
    submit.add_argument("--max-sources", type=int, default=20)
    submit.add_argument(
        "--intensity",
        choices=["light", "moderate", "aggressive"],
        default="moderate",
        help="Stress-test intensity",
    )

    status = sub.add_parser("status", help="Show a job")
    status.add_argument("engagement_id", type=UUID)
    status.add_argument("job_id", type=UUID)

    metrics = sub.add_parser("recompute-metrics", help="Recompute quality metrics")
    metrics.add_argument("engagement_id", type=UUID)

    return parser


def _job_config(args: argparse.Namespace) -> dict:
    if args.type == JobType.STRESS_TEST.value:
        return {"intensity": args.intensity}
    return {
        "thesis": args.thesis or "",
        "depth": args.depth,
        "ticker": args.ticker,
        "max_sources": args.max_sources,
    }


async def run(argv: list[str] | None = None) -> int:
    """
    Run one command.

    Returns:
        Process exit code.
    """
    args = build_parser().parse_args(argv)
    settings = get_settings()
    engine = create_engine(settings)
    session_factory = create_session_factory(engine)

    try:
        if args.command == "init-db":
            await init_db(engine)
            logger.info("Database schema created")
            return 0

        if args.command == "recompute-metrics":
            async with UnitOfWork(session_factory) as uow:
                scores = await MetricsAggregator(uow.session).recompute_and_record(args.engagement_id)
            print(scores.model_dump_json(indent=2))
            return 0

        reasoning = OllamaReasoningProvider()
        market_data = AlphaVantageProvider()
        orchestrator = ResearchOrchestrator(
            session_factory,
            reasoning,
            market_data=market_data,
            settings=settings,
        )
        try:
            if args.command == "submit":
                submission = await orchestrator.start_job(
                    args.engagement_id,
                    args.type,
                    _job_config(args),
                )
                print(submission.model_dump_json(indent=2))
            elif args.command == "status":
                job = await orchestrator.get_status(args.engagement_id, args.job_id)
                print(job.model_dump_json(indent=2))
            elif args.command == "worker":
                await run_worker(orchestrator, args.concurrency, args.once)
        finally:
            await market_data.close()
            await reasoning.close()
        return 0
    except ThesisValidatorError as e:
        logger.error(e.message)
        print(json.dumps(e.to_dict(), indent=2), file=sys.stderr)
        return 1
    finally:
        await engine.dispose()


async def run_worker(orchestrator: ResearchOrchestrator, concurrency: int | None, once: bool) -> None:
    """Recover the durable queue and run jobs until interrupted."""
    recovered = await orchestrator.recover()
    logger.info(f"Worker picked up {recovered} queued job(s)")
    if once:
        await orchestrator.run_until_idle()
        return

    interval = get_settings().queue_poll_interval
    await orchestrator.start(concurrency)
    try:
        while True:
            await asyncio.sleep(interval)
            await orchestrator.enqueue_persisted()
    finally:
        await orchestrator.stop()


def main() -> None:
    """Main entry point for the application."""
    setup_logging()

    try:
        sys.exit(asyncio.run(run(sys.argv[1:])))
    except KeyboardInterrupt:
        print("\nThesis Validator terminated by user.")
        sys.exit(0)
    except Exception as e:
        logging.error(f"Application error: {e}", exc_info=True)
        sys.exit(1)


if __name__ == "__main__":
    main()
