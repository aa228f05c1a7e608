"""
Request middleware chain on top of aiohttp.

Middleware can modify a request before it is sent, inspect the response,
and ask for the request to be sent again.
"""
