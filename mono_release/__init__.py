"""mono-release: coordinated releases for monorepo workspaces.

Resolves each project's next version from conventional commits, propagates
bumps through dependents and fixed release groups, then writes changelogs,
packs artifacts, publishes and tags, one project at a time in dependency
order.
"""
