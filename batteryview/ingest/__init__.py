"""Screenshot ingestion: timestamps, hourly aggregation and the upload queue."""
