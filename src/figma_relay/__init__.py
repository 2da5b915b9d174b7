"""figma-relay: relay AI assistant tool calls to a Figma plugin.

Two processes:
- hub: channel-multiplexed WebSocket router the plugin and gateway join
- gateway: JSON-RPC (stdio or HTTP+SSE) edge that forwards tool calls
  into the hub and correlates the plugin's responses
"""

__version__ = "0.1.0"
