"""workflow-watch test suite.

- test_diff.py / test_diff_properties.py: the emit decision
- test_state.py: watermark persistence
- test_client.py: n8n REST client (httpx.MockTransport)
- test_trigger.py: polling cycles and loop lifecycle
- test_cli.py: watch_workflows entrypoint
"""
