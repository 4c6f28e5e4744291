"""End-to-end scenarios for the ERP gateway.

Each scenario drives the gateway (directly or through the HTTP surface)
against a scripted upstream served by httpx.MockTransport.
"""
