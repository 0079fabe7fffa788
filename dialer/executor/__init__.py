"""Call execution: the queue worker task and the calling provider client."""
