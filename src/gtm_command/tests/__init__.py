"""
GTM Command Center Test Package.

This package contains unit tests for the GTM Command Center modules.

Test categories:
- test_config.py: Configuration and environment variable loading
- test_logging_utils.py: Structured and human-readable log formatting
- test_policies.py: Action policies and the policy table
- test_governor.py: Sliding-window admission, cooldowns and guarded calls
- test_sink.py: Capped throttle log and its storage backends
- test_data_client.py: Query builder, REST transport and the guarded adapter
- test_gemini_client.py: Generative Language client and governed GTM operations
- test_voice_tools.py: Voice assistant tool execution
- test_workspace.py: Lead workspace flows and bulk drafts
"""

__all__ = []
