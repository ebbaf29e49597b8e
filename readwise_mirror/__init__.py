"""
Readwise Reader mirror core package.

The sync subsystem keeps a local directory of self-contained HTML articles
in step with a Readwise Reader library. It exposes dataclasses for remote
documents and persisted settings, a rate-limited API client, an HTML
transform that inlines images under a size budget, a settings repository,
and a worker that drives a sync through archived cleanup, finished
archiving, listing and download phases.
"""
