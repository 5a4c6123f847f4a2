# chunkflow

chunkflow accepts audio chunks over HTTP and WebSocket and runs each one
through a staged, bounded-queue pipeline:

1. **validation**: empty chunks are discarded
2. **transformation**: a SHA-256 checksum, sixteen random mock spectral
   features and a mock transcript (`fake transcript (N bytes)`) are computed
3. **metadata**: a pass-through stage, the place for further enrichment
4. **storage**: the chunk and its metadata are kept in memory and all
   metadata is written to `Data/metadata.json` after every save

Every stage has its own pool of worker threads and its own bounded queue.
When a queue is full, the configured `BackpressurePolicy` decides what
happens: `REJECT_NEW` refuses the new item, `DROP_OLDEST` discards the
oldest queued item to make room. Counters for ingested, validated,
transformed, stored, rejected and dropped chunks are kept in `Metrics`.

## Installation

```
pip install .
```

For running the tests:

```
pip install ".[test]"
pytest
```

## The command

```
chunkflow --runUnitTests=false
```

starts the pipeline and serves HTTP on port 8080. The `runUnitTests`
option defaults to true; in that case `chunkflow` runs
`python -m pytest -v` in the current directory and exits with its status
instead of starting the server. The option accepts `1`, `t`, `true`,
`0`, `f`, `false` (and capitalised forms), and may also be written with a
single dash.

The server sends permissive CORS headers on every response; `OPTIONS`
requests are answered with `204 No Content`.

## HTTP endpoints

| Method | Path                          | Purpose                                  |
|--------|-------------------------------|------------------------------------------|
| POST   | `/public/upload`              | Submit one chunk (raw body) or several (multipart field `files`) |
| GET    | `/public/chunks/{id}`         | Metadata of one stored chunk             |
| GET    | `/public/sessions/{user_id}`  | Metadata of every stored chunk of a user |
| GET    | `/ws`                         | WebSocket streaming upload               |
|        | `/metrics`                    | Plain-text pipeline counters             |

Unknown chunks or users get `404` with `{"message": "audio metadata not found"}`.

### Upload

`user_id` and `session_id` are required form or query values; `timestamp`
is optional (RFC 3339, the current time otherwise or when it does not
parse). A raw body is one chunk; a `multipart/form-data` body may carry
several files under the field name `files` (up to 25 MiB in total).
Accepted chunks get `202 Accepted` with
`{"status": "accepted", "chunk_id": "..."}` (a list of such objects for
multipart uploads). When the pipeline refuses a chunk the answer is
`429 Too Many Requests`. Missing ids, a broken multipart body or a
multipart body without files are answered with `400`.

### WebSocket

Connect to `/ws?user_id=...&session_id=...`. Send either binary frames
holding raw audio, or text frames such as

```json
{"audio_b64": "<base64 audio>", "timestamp": "2025-08-13T12:00:00Z"}
```

A text frame that is not valid JSON, lacks `audio_b64` or holds invalid
base64 is answered with `{"error": "..."}`. Every other frame is answered at
once with an acknowledgement:

```json
{"accepted": true, "chunk_id": "...", "type": "ack"}
```

For accepted chunks a second message follows with the stored metadata
(`{"chunk_id": ..., "meta": {...}, "type": "metadata"}`), or with
`"status": "pending"` if processing took longer than five seconds.

### Metrics

```
ingested 12
validated 12
transformed 12
stored 12
rejected 0
dropped 0
```

## Using it as a library

```python
from chunkflow.app import build_services, create_app

components = build_services("metadata.json")
components.pipeline.start()
app = create_app(components.handler, components.metrics)
```

`build_services` returns an object with `store`, `pipeline`, `service`,
`handler` and `metrics` attributes.

The pieces can also be used on their own:

- `chunkflow.pipeline.Pipeline`, built from `default_config()` and an
  `AudioStore`, offers `start`, `stop`, `ingest`, `get_metadata` and
  `get_chunks_by_user`, and works as a context manager that starts and
  stops its workers. `try_send` is the non-blocking, policy-aware queue put
  the stages use.
- `chunkflow.service.AudioService` wraps a pipeline with `upload_audio`,
  `get_audio_chunks` and `get_audio_metadata`.
- `chunkflow.audiostore.AudioStore` offers `save_chunk`, `get_metadata`,
  `get_chunks_by_user` and `save_metadata_to_disk`.
- `chunkflow.model` holds `ChunkMeta` (with `to_dict`), `RawChunk`,
  `ValidatedChunk`, `TransformedChunk`, `PipelineConfig`,
  `BackpressurePolicy`, `Counter` and `Metrics` (with `snapshot`).

Lookups of unknown chunks or users raise `ChunkNotFoundError`, and chunks
the ingestion queue refuses raise `IngestRejectedError`.

## What it does not do

- Stored chunks live only in memory. `Data/metadata.json` is written but
  never read back, so nothing survives a restart.
- The port is fixed at 8080 when started through the command; use
  `run_server(port)` from `chunkflow.app` for another port.
- Transcripts and spectral features are placeholders; no audio is decoded
  or analysed.