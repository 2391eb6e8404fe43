"""Recent Windows event-log errors and a system snapshot, written to a timestamped report."""
