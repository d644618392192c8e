import asyncio
import logging
import os
import sys
import time
from typing import Optional

from rich.console import Console
from rich.logging import RichHandler
from rich.markdown import Markdown
from rich.panel import Panel
from rich.prompt import Prompt
from rich.table import Table

from analyst.config import get_settings, update_settings
from analyst.errors import ExecutionError, OracleExhausted, RateLimitExceeded
from analyst.pipeline import AnalysisPipeline, build_pipeline, is_causal_question
from analyst.report.reporter import Reporter
from analyst.utils.answers import make_concise_answer, summarize_investigation
from analyst.utils.query_cache import query_cache
from analyst.utils.rate_limiter import rate_limiter
from analyst.utils.schema_cache import SchemaCache

DEFAULT_DATA_DIR = os.path.abspath(os.path.join(os.getcwd(), "data"))
DATA_SUFFIXES = (".parquet", ".csv")

EXIT_OK = 0
EXIT_MISSING_DATASET = 2
EXIT_RATE_LIMITED = 3
EXIT_ORACLE_EXHAUSTED = 4

logger = logging.getLogger(__name__)


def find_dataset_path(user_path: Optional[str], data_dir: str = DEFAULT_DATA_DIR) -> str:
    if user_path:
        if os.path.exists(user_path):
            return os.path.abspath(user_path)
        raise FileNotFoundError(f"Dataset not found: {user_path}")
    if os.path.isdir(data_dir):
        for name in sorted(os.listdir(data_dir)):
            if name.lower().endswith(DATA_SUFFIXES):
                return os.path.join(data_dir, name)
    raise FileNotFoundError("No dataset found. Pass --path or place a .csv/.parquet file in ./data/")


def _render_chart(console: Console, title: str, data) -> None:
    table = Table(title=title)
    table.add_column("name")
    table.add_column("value", justify="right")
    for point in data[:20]:
        table.add_row(str(point["name"]), f"{point['value']:,.2f}")
    console.print(table)


def _configure_logging(level: str) -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(rich_tracebacks=False, show_path=False)],
    )


def run_once(
    pipeline: AnalysisPipeline,
    console: Console,
    dataset_id: str,
    user_id: str,
    question: str,
    save_run: bool = True,
) -> int:
    t0 = time.time()
    try:
        response = asyncio.run(pipeline.run_analysis(dataset_id, user_id, question))
    except RateLimitExceeded as e:
        console.print(Panel.fit(str(e), title="Rate limited"))
        return EXIT_RATE_LIMITED

    if response.sql:
        console.print(Panel.fit("Executed SQL:"))
        console.print(response.sql, markup=False)
    console.print(make_concise_answer(response), markup=False)
    title = response.interpretation.reasoning or response.interpretation.intent
    if response.synthetic:
        title = f"{title} (placeholder data: {response.fallback})"
    if response.cached:
        title = f"{title} (cached)"
    _render_chart(console, title, response.data)

    investigation = None
    summary = {}
    if is_causal_question(question):
        console.print("Investigating root causes...")
        try:
            investigation = asyncio.run(pipeline.explain(dataset_id, user_id, question, response))
        except RateLimitExceeded as e:
            console.print(Panel.fit(str(e), title="Rate limited"))
            return EXIT_RATE_LIMITED
        except OracleExhausted as e:
            console.print(Panel.fit(str(e), title="Investigation aborted"))
            return EXIT_ORACLE_EXHAUSTED
        summary = summarize_investigation(investigation)
        console.print(Markdown(summary["summary"]))
        console.print(f"Confidence: {summary['confidence']} ({summary['data_quality']})")
    latency = time.time() - t0

    if save_run:
        reporter = Reporter()
        markdown = f"Question: {question}\n\n{make_concise_answer(response)}\n"
        if summary:
            markdown += "\n" + summary["summary"]
        run_dir = reporter.save_artifacts(
            response.to_dict()["interpretation"],
            response.sql,
            response.data,
            markdown,
            investigation=investigation.to_dict() if investigation else None,
            latency_sec=latency,
        )
        console.print(Panel.fit(f"Artifacts saved to {run_dir} (Latency: {latency:.2f}s)"))
    return EXIT_OK


def main(argv=None):
    argv = argv if argv is not None else sys.argv[1:]
    import argparse
    settings = get_settings()
    parser = argparse.ArgumentParser(prog="analyst-agent", description="Ask business questions about a CSV or Parquet dataset")
    parser.add_argument("--path", dest="path", default=None, help="Path to a .csv or .parquet file (defaults to ./data)")
    parser.add_argument("--query", dest="query", default=None, help="Run a single question non-interactively and exit")
    parser.add_argument("--user", dest="user", default=os.environ.get("USER", "local"))
    parser.add_argument("--model", dest="model", default=settings.model_name)
    parser.add_argument("--timeout-sec", dest="timeout_sec", type=int, default=settings.oracle_timeout_sec)
    parser.add_argument("--save-run", dest="save_run", action="store_true", default=True)
    parser.add_argument("--no-save-run", dest="save_run", action="store_false")
    parser.add_argument("--log-level", dest="log_level", default=settings.log_level)
    args = parser.parse_args(argv)

    _configure_logging(args.log_level)
    settings = update_settings({"model_name": args.model, "oracle_timeout_sec": args.timeout_sec, "log_level": args.log_level})
    console = Console()

    try:
        data_path = find_dataset_path(args.path)
    except FileNotFoundError as e:
        console.print(Panel.fit(str(e)))
        return EXIT_MISSING_DATASET

    dataset_id = os.path.splitext(os.path.basename(data_path))[0]
    schema_cache = SchemaCache()
    schema_cache.register(dataset_id, data_path)
    try:
        schema = schema_cache.get(dataset_id)
    except ExecutionError as e:
        console.print(Panel.fit(f"Could not read {data_path}: {e.message}"))
        return EXIT_MISSING_DATASET
    console.print(Panel.fit(f"Loaded dataset: {data_path}"))
    console.print(f"Metrics: {', '.join(schema.metrics) or '-'}")
    console.print(f"Dimensions: {', '.join(schema.dimensions) or '-'}")

    pipeline = build_pipeline(schema_cache, query_cache, rate_limiter, settings)

    if args.query:
        return run_once(pipeline, console, dataset_id, args.user, args.query, args.save_run)

    while True:
        q = Prompt.ask("Ask a question (:exit to quit)")
        if q.strip().lower() in {":exit", ":quit", "exit", "quit"}:
            break
        code = run_once(pipeline, console, dataset_id, args.user, q, args.save_run)
        if code == EXIT_RATE_LIMITED:
            break
    return EXIT_OK


if __name__ == "__main__":
    sys.exit(main())
