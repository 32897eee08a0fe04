"""
Ground control station for planetary exploration robots.

This service is responsible for:
- Accepting robot connections over a line-delimited JSON TCP protocol.
- Keeping one shared world map of measured fields and robot positions.
- Driving robots autonomously with a frontier planner and move reservations.
- Exposing an HTTP control API and optionally recording to MongoDB.

Both servers run on Tornado.
"""
