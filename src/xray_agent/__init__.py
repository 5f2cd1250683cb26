"""
X-Ray agent package.

This package contains the streaming analysis service that:
- accepts camera frames and sensor readings over a WebSocket
- detects motion and faces for every frame
- debounces the on-screen decision and recommends a zoom tier
- answers each message with exactly one envelope, in order
"""
