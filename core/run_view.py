import logging

logger = logging.getLogger(__name__)

_LEVELS = {
    "info": logging.INFO,
    "success": logging.INFO,
    "warning": logging.WARNING,
    "error": logging.ERROR,
}

class RunView:
    """
    Everything the run controller shows to the user goes through here.
    This base class writes to the log, which is all the headless mode needs;
    the relay subclasses it to push the same calls to the browser.
    """

    def notice(self, message, level="error"):
        """A blocking, user-facing alert."""
        logger.log(_LEVELS.get(level, logging.INFO), f"[NOTICE] {message}")

    def log(self, message, level="info"):
        logger.log(_LEVELS.get(level, logging.INFO), message)

    def apply_progress(self, delta):
        if delta.text:
            percent = "" if delta.percent is None else f"{delta.percent}% "
            logger.debug(f"{percent}{delta.text}")
        for line in delta.logs:
            self.log(line.message, line.level)

    def reset_progress(self, message=""):
        pass

    def show_summary(self, summary):
        counts = summary["counts"]
        perf = summary["performance"]
        logger.info(
            f"Summary: scanned={counts['scanned']} eligible={counts['eligible']} copied={counts['copied']} "
            f"skipped={counts['skipped']} failed={counts['failed']} unclassified={counts['unclassified']} "
            f"duration={perf['duration']} bytes={perf['bytes_copied']} speed={perf['throughput']}"
        )

    def show_history(self, entries):
        logger.debug(f"Run history refreshed: {len(entries)} entries")

    def set_start_enabled(self, enabled):
        pass

    def state_changed(self, state):
        pass
