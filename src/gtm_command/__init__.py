"""GTM Command Center backend services.

This package provides the lead-management services behind the GTM Command
Center: thin clients over the hosted data service and the generative-AI API,
and the client-side request governor that throttles both.
"""

__version__ = "0.1.0"
