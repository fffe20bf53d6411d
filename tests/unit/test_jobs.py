import pytest

from standing.jobs.scheduler import JobScheduler
from standing.models import MemberStatus


@pytest.mark.asyncio
async def test_session_sweep_job_removes_expired_sessions(container, clock, make_member):
    member = await make_member()
    await container.sessions.create(member.id)
    clock.advance(hours=25)
    await container.sessions.create(member.id)

    assert await container.session_sweep.run_once() == 1
    assert len(await container.sessions.list_for_member(member.id)) == 1


@pytest.mark.asyncio
async def test_standing_sweep_job_reports_expiries(container, clock, make_member):
    member = await make_member()
    clock.advance(days=367)

    report = await container.standing_sweep.run_once()

    assert report.expired == 1
    assert (await container.membership.lookup(member.id)).status == MemberStatus.EXPIRED


@pytest.mark.asyncio
async def test_scheduler_registers_jobs_once(container):
    scheduler = JobScheduler()
    scheduler.start()
    try:
        scheduler.schedule_every(container.session_sweep.name, container.session_sweep.run_once, minutes=15)
        scheduler.schedule_every(container.standing_sweep.name, container.standing_sweep.run_once, minutes=15)
        scheduler.schedule_every(container.standing_sweep.name, container.standing_sweep.run_once, minutes=5)
        assert sorted(scheduler.job_ids()) == sorted([container.session_sweep.name, container.standing_sweep.name])
        assert scheduler.running
    finally:
        scheduler.shutdown()
    assert not scheduler.running
