"""Realtime fan-out of forum activity to connected viewers.

Write actions commit first and only then hand a summary to the hub, which pushes it to
the category or thread group currently subscribed. Delivery is best effort: nothing is
queued for viewers that connect later.
"""
