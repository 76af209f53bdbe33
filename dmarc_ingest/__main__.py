from dmarc_ingest.app import run

run()
