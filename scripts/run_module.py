"""Run the pipeline for one module synchronously and print the ModuleResult.

Usage:
    python scripts/run_module.py MODULE_ID [MODULE_TITLE]
"""
import sys
from dotenv import load_dotenv
from rich.console import Console
from flashcard_orchestrator.log import setup_logging
from flashcard_orchestrator.pipeline.run import build_pipeline
from flashcard_orchestrator.schemas.results import ModuleRef
from flashcard_orchestrator.store.db import init_db

def run(module_id: str, module_title: str = ""):
    load_dotenv()
    setup_logging()
    init_db()

    console = Console()
    console.print(f"Running pipeline for module [bold]{module_id}[/bold]...")
    result = build_pipeline().run(ModuleRef(module_id=module_id, module_title=module_title))
    console.print_json(result.model_dump_json())

if __name__ == "__main__":
    if len(sys.argv) < 2:
        print(__doc__)
        sys.exit(1)
    run(sys.argv[1], " ".join(sys.argv[2:]))
