from datetime import timedelta

from leadrunner.models import Account
from leadrunner.resilience import QuotaController
from leadrunner.scheduler import Job


def make_job(**kwargs):
    kwargs.setdefault('credits', 100)
    return Job(Account(email="a@example.com", **kwargs))


def test_unopened_window_is_never_done(clock):
    quota = QuotaController(daily_limit=5, clock=clock)

    assert not quota.is_done_for_today(make_job())


def test_daily_limit_reached_within_window_resets(clock):
    quota = QuotaController(daily_limit=5, clock=clock)
    job = make_job()
    quota.open_window(job)

    for _ in range(5):
        quota.record_save(job, 1)
    assert job.saved_today == 5

    assert quota.is_done_for_today(job)
    assert job.started_at is None
    assert job.saved_today == 0


def test_below_limit_keeps_window(clock):
    quota = QuotaController(daily_limit=5, clock=clock)
    job = make_job()
    quota.open_window(job)
    quota.record_save(job, 4)

    assert not quota.is_done_for_today(job)
    assert job.started_at == clock()
    assert job.saved_today == 4


def test_limit_argument_overrides_default(clock):
    quota = QuotaController(daily_limit=500, clock=clock)
    job = make_job()
    quota.open_window(job)
    quota.record_save(job, 3)

    assert quota.is_done_for_today(job, daily_limit=3)


def test_elapsed_window_self_heals(clock):
    quota = QuotaController(daily_limit=5, clock=clock)
    job = make_job()
    job.started_at = clock() - timedelta(hours=25)
    job.saved_today = 10

    assert not quota.is_done_for_today(job)
    assert job.started_at is None
    assert job.saved_today == 0


def test_open_window_keeps_an_open_window(clock):
    quota = QuotaController(clock=clock)
    job = make_job()
    quota.open_window(job)
    quota.record_save(job, 2)
    clock.advance(60)

    quota.open_window(job)

    assert job.started_at == clock() - timedelta(seconds=60)
    assert job.saved_today == 2


def test_can_scrape_needs_credits(clock):
    quota = QuotaController(clock=clock)

    assert quota.can_scrape(Account(email="a@example.com", credits=1))
    assert not quota.can_scrape(Account(email="a@example.com", credits=0))
    assert not quota.can_scrape(Account(email="a@example.com", credits=-3))


def test_record_save_updates_account_and_job(clock):
    quota = QuotaController(clock=clock)
    job = make_job(credits=10, saved=4)

    quota.record_save(job, 3)

    assert job.account.saved == 7
    assert job.account.credits == 7
    assert job.saved_today == 3


def test_record_save_ignores_empty_batches(clock):
    quota = QuotaController(clock=clock)
    job = make_job(credits=10)

    quota.record_save(job, 0)

    assert job.account.saved == 0
    assert job.account.credits == 10


def test_mark_daily_limit_hit_sets_24h_cooldown(clock):
    quota = QuotaController(clock=clock)
    account = Account(email="a@example.com")

    quota.mark_daily_limit_hit(account)

    assert account.timeout == clock() + timedelta(hours=24)
    assert account.is_timed_out(clock())
