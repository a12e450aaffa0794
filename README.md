# openbpl

A brand-protection monitor. `openbpl` listens to a certstream
(certificate transparency) WebSocket feed, picks out newly certified
domains that contain the keywords you care about, and runs each one
through an enrichment, detection and enforcement pipeline, keeping a
record of every event and detection in memory while it runs.

## Installation

```
pip install openbpl
```

With the test dependencies:

```
pip install "openbpl[test]"
```

## Quick start

Create a sample configuration in the current directory:

```
openbpl config init
```

This writes `openbpl.yaml`; it refuses to overwrite an existing file.
Edit it, then start monitoring:

```
openbpl run
```

Show the version:

```
openbpl version
```

## Running the monitor

`openbpl run` accepts:

| Option | Meaning |
| --- | --- |
| `-c`, `--config PATH` | configuration file (default `openbpl.yaml`) |
| `-d`, `--dry-run` | run the pipeline in dry-run mode |
| `-s`, `--storage TYPE` | storage backend, overriding the configuration |
| `--duration D` | stop after a duration such as `30s`, `250ms`, `5m` or `1h30m`; `0` (the default) runs until interrupted |

Examples:

```
openbpl run --dry-run --duration 10m
openbpl run -c /etc/openbpl/openbpl.yaml
```

The monitor stops cleanly on Ctrl-C or SIGTERM. Every 30 seconds it logs
a summary of uptime, certificates processed, threats found and
enforcement actions (live and dry-run counted separately). If the
connection to the feed fails or stays silent for 60 seconds, it
reconnects after 5 seconds.

Errors in loading the configuration or creating the storage are printed
as `Error: ...` and the command exits with status 1.

## Configuration

The configuration is YAML. Environment variables written as `$NAME` or
`${NAME}` are expanded before parsing; unset variables become empty.
Unknown keys are ignored.

```yaml
monitoring:
  sources:
    certstream:
      enabled: true
      url: "wss://certstream.calidog.io/"
      keywords: ["paypal", "amazon", "microsoft"]

enrichment:
  html_content:
    enabled: true
    timeout: "10s"
    user_agent: "OpenBPL/1.0"
  favicon:
    enabled: true
    timeout: "5s"

rules:
  favicon_similarity:
    enabled: true
    threshold: 0.85
    reference_favicons:
      paypal: "https://www.paypal.com/favicon.ico"

enforcement:
  email_abuse:
    enabled: true
    smtp:
      host: "smtp.example.com"
      port: 587
      username: "alerts@example.com"
      password: "${SMTP_PASSWORD}"
    from: "OpenBPL <alerts@example.com>"
  logger:
    enabled: true

storage:
  type: "memory"

logging:
  level: "info"
  format: "text"

dry_run: false
```

Values left empty (or zero) take these defaults: certstream URL
`wss://certstream.calidog.io/`, HTML timeout `10s`, user agent
`OpenBPL/1.0`, favicon timeout `5s`, similarity threshold `0.85`,
storage `memory`, log level `info`, log format `text`, SMTP port `587`.

A configuration is rejected when:

- the storage type is not `memory`, `sqlite` or `postgres`;
- the log level is not `debug`, `info`, `warn` or `error`;
- favicon similarity is enabled with a threshold outside 0 to 1;
- e-mail enforcement is enabled without an SMTP host or a from address.

## The pipeline

**Source.** From each `certificate_update` message the common name and
every `DNS:` entry of the subject alternative names are taken,
lower-cased. A domain becomes an event when it is not a wildcard (`*.`),
is at least four bytes long, and contains at least one configured
keyword (compared case-insensitively). The keywords that matched are
kept in the event's metadata. If the event queue stays full for a
second, the domain is dropped with a warning.

**Enrichment.** The HTML enricher fetches `https://<domain>/` (up to
1 MiB) and stores the decoded text under `html_content` in the event's
data. The favicon enricher fetches `https://<domain>/favicon.ico` (up to
256 KiB) and stores the bytes under `favicon` and their SHA-256 under
`favicon_sha256`.

**Detection.** The favicon similarity detector fetches each brand's
reference favicon once, then compares it byte-wise with the event's
favicon, producing one result per brand with a similarity score between
0 and 1. A score at or above the threshold marks the result as a threat.

**Enforcement.** For each threat the logger enforcer writes a log line
(prefixed `[dry-run]` in dry-run mode). Each enforcer that completes is
counted as one action.

A failing enricher, detector or enforcer is logged and the pipeline goes
on with the next one.

## Using it as a library

```python
import asyncio

from openbpl.config import load_from_file
from openbpl.engine import Engine
from openbpl.models import Event

cfg = load_from_file("openbpl.yaml")
engine = Engine(cfg)

results = asyncio.run(engine.process_event(Event(domain="paypal-login.example.com")))
threats = engine.storage.get_detections({"is_threat": True})
print(engine.format_stats())
```

`load_from_file`, `create_sample_config`, `Config` and `ConfigError`
live in `openbpl.config`; `MemoryStorage`, `new_storage` and
`StorageError` in `openbpl.storage`; the `Event` and `DetectionResult`
records and the pipeline components in `openbpl.models`;
`CertstreamSource` and `extract_domains` in `openbpl.certstream`;
`Engine` and `Statistics` in `openbpl.engine`; and the command line in
`openbpl.cli`.

`MemoryStorage.get_events` filters on `source`, `type` and `domain`;
`get_detections` on `domain`, `brand`, `rule` and `is_threat`. Other
filter keys are ignored.

## What it does not do

- **No e-mail is sent.** The `email_abuse` enforcer is configured and
  validated, and counted as an action, but it sends nothing.
- **No lasting storage.** Only the `memory` backend exists; everything
  is lost when the process ends. Choosing `sqlite` or `postgres` passes
  validation but is reported as an error at start-up. There is no
  command to query stored events or detections.
- **The `logging` settings are not applied.** `level` and `format` are
  validated, but the command always logs at INFO level as plain text.