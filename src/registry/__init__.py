"""Repository backends.

- base.py: RepositoryBackend interface and RawCandidate
- local.py: directory of .nupkg archives
- v2.py: NuGet V2 OData feeds
- v3.py: NuGet V3 service index / registration feeds
- factory.py: backend selection by protocol
"""
