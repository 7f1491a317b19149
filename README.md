# reviewproxy

reviewproxy is a small HTTP front door for review environments, one per branch.
A request for `<subdomain>.<domain>` goes through these steps:

1. If reviewproxy knows of no stack for that subdomain, it takes the `image:` line
   of your compose template, puts the subdomain in place of `${SUBDOMAIN}`, and asks
   the container registry whether that image tag exists.
2. If the image exists, it renders the compose template with `${SUBDOMAIN}`
   replaced and runs `docker compose up -d --wait` in the background under the
   project name `review-<subdomain>`. Meanwhile visitors get a "preparing" page
   that refreshes itself every 3 seconds.
3. Once the stack is up, requests are forwarded to
   `http://review-<subdomain>-<target_service>-1:<target_port>`. If the container
   does not answer, the visitor gets the "preparing" page with status 502.
4. After `idle_timeout` with no requests, the stack is shut down with
   `docker compose down --remove-orphans --volumes`.

If the registry has no image for the subdomain, visitors get a "not found" page
(status 404). When a request comes in more than a minute after the last check,
reviewproxy asks the registry again in the background, so the environment starts
once CI has pushed the image.

Hosts that are not a subdomain of the configured domain get status 400.

On startup, reviewproxy picks up any `review-*` compose projects that are already
running (found with `docker compose ls`).

## Installation

```
pip install .
```

You need Docker with the compose plugin on the host. The proxy must be able to
reach the service containers by name, for example by sharing a Docker network
with them.

## Configuration

The configuration file is YAML:

```yaml
domain: review.example.com
compose_template: /etc/review-proxy/docker-compose.template.yml
target_service: app
target_port: 8080
idle_timeout: 30m
```

`idle_timeout` takes duration strings such as `90s`, `5m`, `1.5h` or `1h30m`
(units `ns`, `us`, `ms`, `s`, `m`, `h`).

The compose template must have an `image:` line that contains `${SUBDOMAIN}`.
reviewproxy uses the first such line to find out which image to look for in the
registry. The image must name its registry host:

```yaml
services:
  app:
    image: registry.example.com/myapp:${SUBDOMAIN}
    networks:
      - review-proxy
networks:
  review-proxy:
    external: true
```

Registries are queried over HTTPS. Registries that answer with a bearer-token
challenge (`Www-Authenticate: Bearer realm=...`) are supported for anonymous pulls.

## Running

```
reviewproxy --config /etc/review-proxy/config.yaml
```

If `--config` is not given, the path defaults to `/etc/review-proxy/config.yaml`.
The server listens on port 80 and logs to standard error. Point a wildcard DNS
record `*.review.example.com` at the host.

## Using it as a library

The pieces can be used on their own:

```python
from reviewproxy.subdomain import extract_subdomain
from reviewproxy.registry import parse_image_ref, RegistryClient

extract_subdomain("pr-42.review.example.com:8080", "review.example.com")  # "pr-42"

ref = parse_image_ref("ghcr.io/org/app:main")
digest = RegistryClient().check_tag(ref)  # "" when the tag does not exist
```

Other building blocks:

- `reviewproxy.config.load_config(path)` returns a `Config`; `parse_duration(text)`
  turns a duration string into a `timedelta`.
- `reviewproxy.compose.render_template(path, subdomain)` is a context manager that
  yields the path of a temporary rendered compose file and removes it afterwards.
  `ComposeManager` has `start_stack`, `stop_stack` and `pull_and_restart`;
  `list_running_stacks()` returns the subdomains of running `review-*` projects.
  Failures raise `ComposeError`.
- `reviewproxy.state.StateManager` tracks each stack's `StackStatus` and fires an
  `on_idle` callback after the idle timeout.
- `reviewproxy.pages` renders the "preparing" and "not found" pages.
- `reviewproxy.handler.Handler` is a WSGI application, so any WSGI server can host it.

## Limitations

- Every five minutes of traffic, the server looks up the image digest again and
  records it, but it does not pull a new image or restart the stack.
  `ComposeManager.pull_and_restart` exists for that, but the server does not call it.
- Proxied responses are read in full before they are sent on; streaming responses
  and WebSocket upgrades are not passed through.
- The server speaks plain HTTP only; put a TLS terminator in front of it.

## Development

```
pip install -e '.[test]'
pytest
```