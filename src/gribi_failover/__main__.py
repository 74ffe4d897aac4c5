import argparse
import logging
import sys
import traceback

from tabulate import tabulate

from gribi_failover.config import Config, LoggingConfig
from gribi_failover.scenario import BackupSwitchScenario

logger = logging.getLogger(__name__)


def main(argv=None) -> int:
    parser = argparse.ArgumentParser(
        description="Verify gRIBI backup next hop group switchover with OTG traffic"
    )
    parser.add_argument("--config-file", required=True, help="Testbed JSON file")
    parser.add_argument("--log-level", default=None, help="Override LOG_LEVEL")
    args = parser.parse_args(argv)

    try:
        config = Config(args.config_file)
        if args.log_level:
            config.logging = LoggingConfig(LOG_LEVEL=args.log_level)
        config.setup_logging()

        logger.info(f"Python version: {sys.version}")
        logger.info("Starting backup switch scenario")
        results = BackupSwitchScenario.from_config(config).run()

        rows = [
            [r.phase, r.nhg_id, ", ".join(r.next_hops), r.flow.loss_pct if r.flow else ""]
            for r in results
        ]
        logger.info(
            "Scenario results:\n"
            + tabulate(rows, headers=["Phase", "NHG", "Next Hops", "Loss %"])
        )
        return 0
    except Exception as e:
        logger.critical(f"Backup switch scenario failed: {str(e)}")
        logger.critical(f"Traceback: {traceback.format_exc()}")
        return 1


if __name__ == "__main__":
    sys.exit(main())
