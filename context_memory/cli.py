"""
Command-line interface for the context memory package.
"""

import argparse
import json
import logging
import sys
from pathlib import Path

from .config import ContextMemoryConfig, load_config
from .errors import ContextMemoryError
from .observability.logging import LogLevel, StructuredLogger, configure_logging


def setup_logging(verbose: bool = False, json_output: bool = False, level: str = "WARNING"):
    """Configure logging."""
    if verbose:
        level = "DEBUG"
    if json_output:
        configure_logging(LogLevel(level), json_output=True)
        return
    logging.basicConfig(
        level=getattr(logging, level, logging.WARNING),
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )


def build_store(config: ContextMemoryConfig):
    """Create the store described by the configuration."""
    from .memory import ContextStore

    return ContextStore(
        db_path=config.store.db_path,
        max_items=config.store.max_items,
        max_value_length=config.store.max_value_length,
    )


def main(argv=None):
    """Main entry point for the CLI."""
    parser = argparse.ArgumentParser(
        description="context-memory - adaptive user-context memory for a task manager",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Tell the memory something
  context-memory remember "Sarah is my manager" --category person

  # Show what is known about a topic
  context-memory recall --topic sarah

  # Context for a prompt
  context-memory context "meeting with sarah" --max-items 5

  # Learn from an exported task list
  context-memory extract tasks.json

  # Daily cleanup
  context-memory maintain
        """
    )
    parser.add_argument("--db-path", help="Path to the context database")
    parser.add_argument("--config", help="Path to a YAML configuration file")
    parser.add_argument("-v", "--verbose", action="store_true", help="Enable verbose logging")
    parser.add_argument("--json-logs", action="store_true", help="Emit logs as JSON")

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    remember_parser = subparsers.add_parser("remember", help="Store a fact about the user")
    remember_parser.add_argument("information", help="What to remember")
    remember_parser.add_argument(
        "-c", "--category",
        default="other",
        help="person, preference, schedule, goal, constraint or other"
    )
    remember_parser.add_argument("-k", "--key", help="Identifier; generated if omitted")

    recall_parser = subparsers.add_parser("recall", help="Show stored context")
    recall_parser.add_argument("-c", "--category", help="Restrict to one category")
    recall_parser.add_argument("-t", "--topic", help="Search by keyword")

    forget_parser = subparsers.add_parser("forget", help="Delete stored context")
    forget_parser.add_argument("topic", help="Key, keyword, category name, or 'all'")
    forget_parser.add_argument("-y", "--confirm", action="store_true", help="Confirm deleting several items")

    context_parser = subparsers.add_parser("context", help="Rank context for a prompt")
    context_parser.add_argument("query", nargs="?", default="", help="Prompt text to rank against")
    context_parser.add_argument("-n", "--max-items", type=int, help="Maximum items")
    context_parser.add_argument("--min-confidence", type=float, help="Effective confidence floor")

    intent_parser = subparsers.add_parser("intent", help="Context for a fixed intent")
    intent_parser.add_argument(
        "intent",
        choices=["create_task", "plan_day", "prioritize", "query", "general"],
        help="Downstream use"
    )

    maintain_parser = subparsers.add_parser("maintain", help="Run retention maintenance")
    maintain_parser.add_argument(
        "--light",
        action="store_true",
        help="Only run if the store is over capacity"
    )

    subparsers.add_parser("insights", help="Show learned insights")
    subparsers.add_parser("summary", help="Print the one-line prompt summary")

    extract_parser = subparsers.add_parser("extract", help="Learn from a JSON task export")
    extract_parser.add_argument("tasks_file", help="JSON file with a list of tasks")
    extract_parser.add_argument("--batch-size", type=int, default=20, help="Tasks per batch")

    export_parser = subparsers.add_parser("export", help="Export context to a JSON file")
    export_parser.add_argument("output", help="Output file path")

    import_parser = subparsers.add_parser("import", help="Import context from a JSON file")
    import_parser.add_argument("input", help="Input file path")

    subparsers.add_parser("stats", help="Show store statistics")

    clear_parser = subparsers.add_parser("clear", help="Delete all stored context")
    clear_parser.add_argument("-y", "--yes", action="store_true", help="Skip confirmation prompt")

    args = parser.parse_args(argv)

    if not args.command:
        parser.print_help()
        sys.exit(1)

    overrides = {"db_path": args.db_path} if args.db_path else {}
    config = load_config(config_path=args.config, **overrides)
    setup_logging(args.verbose, args.json_logs or config.json_logs, config.log_level)

    store = build_store(config)
    try:
        handler = HANDLERS[args.command]
        handler(store, config, args)
    except ContextMemoryError as e:
        print(f"Error: {e}")
        sys.exit(1)
    finally:
        store.close()


def _tools(store):
    from .tools import ContextTools
    return ContextTools(store)


def handle_remember(store, config, args):
    print(_tools(store).remember(args.information, category=args.category, key=args.key))


def handle_recall(store, config, args):
    print(_tools(store).recall(category=args.category, topic=args.topic))


def handle_forget(store, config, args):
    print(_tools(store).forget(args.topic, confirm=args.confirm))


def handle_context(store, config, args):
    """Rank and print context in prompt format."""
    tools = _tools(store)
    items = tools.relevant_context(
        args.query,
        max_items=args.max_items or config.ranker.max_items,
        min_confidence=(
            args.min_confidence if args.min_confidence is not None
            else config.ranker.min_confidence
        ),
    )
    if not items:
        print("No relevant context.")
        return
    print(tools.format_for_prompt(items))


def handle_intent(store, config, args):
    tools = _tools(store)
    items = tools.relevant_for_intent(args.intent)
    if not items:
        print("No relevant context.")
        return
    print(tools.format_for_prompt(items))


def handle_maintain(store, config, args):
    """Run full or light maintenance and report."""
    from .memory import RetentionPolicy

    policy = RetentionPolicy(
        store,
        weak_pattern_min_data_points=config.retention.weak_pattern_min_data_points,
        weak_pattern_max_age_days=config.retention.weak_pattern_max_age_days,
    )
    report = policy.run_light_maintenance() if args.light else policy.run_full_maintenance()
    if report is None:
        print(f"Store is within capacity ({store.count()} items), nothing to do.")
        return

    StructuredLogger("context_memory.cli").info("Maintenance finished", **report.to_dict())
    print(
        f"Removed {report.total_removed} items "
        f"(stale: {report.stale_removed}, weak patterns: {report.weak_patterns_removed}, "
        f"over capacity: {report.excess_removed})"
    )
    if report.failures:
        print(f"Could not remove: {', '.join(report.failures)}")


def handle_insights(store, config, args):
    insights = _tools(store).generate_insights()
    if not insights:
        print("Not enough data for insights yet.")
        return
    for insight in insights:
        print(f"{insight.title} ({insight.confidence:.0%})")
        print(f"   {insight.description}")


def handle_summary(store, config, args):
    summary = _tools(store).prompt_summary()
    print(summary or "No summary available yet.")


def handle_extract(store, config, args):
    """Backfill context from a task export."""
    from .extraction import JsonFileTaskReader, SignalExtractor

    if not Path(args.tasks_file).exists():
        print(f"Error: File not found: {args.tasks_file}")
        sys.exit(1)

    extractor = SignalExtractor(store, JsonFileTaskReader(args.tasks_file))
    processed = extractor.process_all_existing_tasks(batch_size=args.batch_size)
    print(f"Processed {processed} tasks; store now holds {store.count()} items")


def handle_export(store, config, args):
    count = store.export_context(args.output)
    print(f"Exported {count} items to {args.output}")


def handle_import(store, config, args):
    if not Path(args.input).exists():
        print(f"Error: File not found: {args.input}")
        sys.exit(1)
    try:
        count = store.import_context(args.input)
    except json.JSONDecodeError as e:
        print(f"Error: {args.input} is not valid JSON: {e}")
        sys.exit(1)
    print(f"Imported {count} items from {args.input}")


def handle_stats(store, config, args):
    print(store.get_stats_summary())


def handle_clear(store, config, args):
    if not args.yes:
        confirm = input("Are you sure you want to delete ALL stored context? This cannot be undone. [y/N]: ")
        if confirm.lower() != 'y':
            print("Aborted.")
            return

    removed = store.delete_all()
    print(f"Deleted {removed} items.")


HANDLERS = {
    "remember": handle_remember,
    "recall": handle_recall,
    "forget": handle_forget,
    "context": handle_context,
    "intent": handle_intent,
    "maintain": handle_maintain,
    "insights": handle_insights,
    "summary": handle_summary,
    "extract": handle_extract,
    "export": handle_export,
    "import": handle_import,
    "stats": handle_stats,
    "clear": handle_clear,
}


if __name__ == "__main__":
    main()
