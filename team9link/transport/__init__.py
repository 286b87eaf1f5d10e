"""Team9 wire models, REST client, realtime socket and media helpers."""
