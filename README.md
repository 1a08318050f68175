# cachewarm

`cachewarm` warms a CDN cache. It finds a site's URLs through its sitemaps and
requests each of them. For every response it records these values:

- the status code
- the response time in milliseconds
- the content type
- the `CF-Cache-Status` header

Work is stored as tasks in a SQL database. A pool of worker threads takes the
tasks from the database and processes them.

## Installation

```
pip install .
pip install ".[test]"   # adds pytest for the test suite
```

The database layer uses SQLAlchemy. SQLite works with no further setup. For
PostgreSQL you must also install a SQLAlchemy driver, such as `psycopg2`.

## Warming a single URL

```python
from cachewarm.crawler import Crawler, CrawlError
from cachewarm.models import default_config

crawler = Crawler(default_config(), "1")   # User-Agent gets " Worker-1" appended
try:
    result = crawler.warm_url("https://example.com/", timeout=10)
    print(result.status_code, result.cache_status, result.response_time, result.warning)
except CrawlError as exc:
    print("failed:", exc, exc.result.status_code)
```

`warm_url` returns a `CrawlResult` (from `cachewarm.models`). It raises
`CrawlError` in three cases:

- the URL has no scheme or no host;
- the request fails at the network level;
- the response status is outside the 2xx range. For example, a 404 gives
  `HTTP 404: Page not found`.

The partial result is available as `exc.result`.

A successful response can still carry a warning in `result.warning`. This
happens in these cases:

- the cache header is missing;
- the cache status is `EXPIRED`, `BYPASS`, `DYNAMIC`, or any value the crawler
  does not recognise;
- the HTML is very small or looks like a "not found" page;
- the JSON is invalid or contains an `error` field;
- the plain text looks like an error message;
- the body is empty.

If `skip_cached_urls=True` is set on the `Config`, the crawler first sends a
`HEAD` request. When that request reports `HIT`, it skips the full request and
sets `result.skipped_crawl`.

`should_retry(error, status_code)` returns `True` in three cases: there was an
error, the status is 5xx, or the status is 429.

## Sitemaps

```python
sitemaps = crawler.discover_sitemaps("example.com")
urls = []
for sitemap_url in sitemaps:
    urls.extend(crawler.parse_sitemap(sitemap_url))
urls = crawler.filter_urls(urls, ["/blog/"], ["/blog/drafts/"])
```

The same functions are also available in `cachewarm.sitemap`. There they take
an optional `requests.Session`:

- `discover_sitemaps` reads `Sitemap:` lines from `https://<domain>/robots.txt`.
  If that file lists none, it falls back to `/sitemap.xml` and
  `/sitemap_index.xml`.
- `parse_sitemap` follows sitemap indexes recursively. It raises
  `requests.HTTPError` when a sitemap is not served with status 200.
- `filter_urls` keeps the URLs that contain at least one include substring and
  contain no exclude substring.
- `validate_url` accepts only `http` and `https` URLs that have a host. Any
  other URL raises `ValueError`.

## Database and task queue

```python
import uuid
from datetime import datetime

from cachewarm.database import Database
from cachewarm.schema import jobs
from cachewarm.worker import WorkerPool

with Database.from_env() as db:
    job_id = str(uuid.uuid4())
    with db.engine.begin() as conn:
        conn.execute(jobs.insert().values(
            id=job_id, domain="example.com", status="pending", progress=0.0,
            total_tasks=0, completed_tasks=0, failed_tasks=0,
            created_at=datetime.now(), concurrency=5, find_links=False,
        ))

    queue = db.get_queue()
    queue.enqueue_urls(job_id, urls, "sitemap", "", 0)

    pool = WorkerPool(queue, crawler, 5, 0.1)
    pool.start()
    ...
    pool.stop()
```

`Database.from_env()` reads its settings from the environment. It uses
`DATABASE_URL` when that is set. Otherwise it builds a connection string from
`PGHOST`, `PGPORT`, `PGUSER`, `PGPASSWORD`, `PGDATABASE` and `PGSSLMODE`. The
port defaults to `5432` and `sslmode` defaults to `require`.

You can also build a `Database` directly from any of these:

- a URL, for example `Database("sqlite://")`;
- a key=value connection string;
- a SQLAlchemy engine.

On construction it pings the database and creates the `jobs`, `tasks` and
`crawl_results` tables if they are missing. These tables are defined in
`cachewarm.schema`.

Methods of `Database`:

- `store_crawl_result(StoredCrawlResult)` returns the new id.
- `get_recent_results(limit)` returns results newest first.
- `check_health()` returns a `HealthCheck` with connectivity, latency and
  table names.
- `reset_schema()` drops the tables and recreates them.
- `exec_with_metrics` and `query_with_metrics` log queries that take longer
  than one second.
- `get_queue()` returns a `TaskQueue`.

`TaskQueue` has these methods:

- `get_next_task()` claims the oldest pending task and marks it `running`.
- `get_next_pending_task(job_id)` does the same within one job.
- `enqueue_urls(...)` adds tasks.
- `complete_task(task)` finishes a task.
- `fail_task(task, error)` marks a task as failed.

Completing or failing a task recalculates the job's progress. When every task
of the job has finished, the job is marked `completed`.

`WorkerPool` runs `worker_count` threads. Each thread claims tasks and warms
their URLs, then marks the tasks completed or failed. Between polls a thread
waits `task_interval` seconds. After an error it waits ten times as long.

`cachewarm.dbqueue.DbQueue` is a separate utility. It runs submitted functions
on a small pool of threads, each function in its own transaction, and retries
up to three times on "database is locked" errors.

## Connection check command

```
cachewarm-dbcheck [--env-file PATH]
```

The command loads environment variables from `.env`, or from the file given
with `--env-file`. It then connects with `Database.from_env()` and performs
these steps:

1. Creates a test job.
2. Enqueues three tasks.
3. Claims one task and completes it.
4. Logs the job's progress.
5. Deletes the test data.

It exits with status 1 if the env file is missing or any step fails, and with 0
otherwise.

## What it does not do

- There is no HTTP server or API, and there is no command that runs a crawl.
  To start a crawl you create the jobs, enqueue URLs and start a
  `WorkerPool` yourself.
- Job rows are not created for you. Insert them into `schema.jobs` as shown
  above.
- Links found on crawled pages are not followed. `CrawlOptions`, and the
  `find_links` and `max_depth` job columns, are stored but not acted on.
- The `max_concurrency`, `rate_limit`, `retry_attempts` and `retry_delay`
  settings on `Config` are not enforced. A failed URL is not retried.