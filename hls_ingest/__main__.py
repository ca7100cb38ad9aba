from hls_ingest.main import run

run()
