"""Tests for the invitation polling loop."""

import time
from dataclasses import replace
from datetime import datetime, timedelta, timezone

import pytest

from conftest import FakeDirectory, FakeInvitationSource, FakeMatcher, FakeNotifier, FakeScheduler
from minutes_bot.audio.voiceprints import VoiceprintRegistry
from minutes_bot.collaborators import Invitation
from minutes_bot.server.listener import ENROLLMENT_SUBJECT, InvitationListener


START = datetime(2030, 6, 1, 10, 0, tzinfo=timezone.utc)


def workflow(access_code):
    return True


@pytest.fixture
def registry():
    return VoiceprintRegistry(FakeMatcher(), min_enrollment_ms=1000)


def make_listener(config, invitations, attendees=(), registry=None, notifier=None, directory=None):
    source = FakeInvitationSource(invitations)
    scheduler = FakeScheduler()
    notifier = notifier or FakeNotifier()
    listener = InvitationListener(
        config,
        source,
        directory or FakeDirectory(attendees),
        registry or VoiceprintRegistry(FakeMatcher()),
        notifier,
        scheduler,
        workflow,
    )
    return listener, source, scheduler, notifier


class TestPollOnce:
    def test_valid_invitation_is_scheduled_and_deleted(self, config):
        invitation = Invitation("123456789", START, message_id="m-1")
        listener, source, scheduler, _ = make_listener(config, [invitation])

        handle = listener.poll_once()

        assert handle is scheduler.scheduled[0]
        assert handle["trigger_time"] == START
        assert handle["args"] == ("123456789",)
        assert handle["name"] == "meeting-123456789"
        assert handle["workflow"] is workflow
        assert source.deleted == [invitation]

    @pytest.mark.parametrize(
        "invitation",
        [Invitation("12345", START), Invitation("12345678901", START), Invitation("abcdefghi", START),
         Invitation("123456789", None)],
    )
    def test_invalid_invitation_is_deleted_without_scheduling(self, config, invitation):
        listener, source, scheduler, _ = make_listener(config, [invitation])

        assert listener.poll_once() is None
        assert scheduler.scheduled == []
        assert source.deleted == [invitation]

    def test_empty_inbox(self, config):
        listener, _, scheduler, _ = make_listener(config, [])

        assert listener.poll_once() is None
        assert scheduler.scheduled == []

    def test_one_invitation_per_poll(self, config):
        invitations = [Invitation("123456789", START), Invitation("987654321", START + timedelta(hours=1))]
        listener, source, scheduler, _ = make_listener(config, invitations)

        listener.poll_once()

        assert len(scheduler.scheduled) == 1
        assert len(source.invitations) == 1


class TestEnrollmentRequests:
    def test_unregistered_attendees_are_asked_to_enroll(self, config, registry, alice, bob, voice_sample):
        registry.enroll(alice, voice_sample)
        listener, _, _, notifier = make_listener(
            config, [Invitation("123456789", START)], attendees=[alice, bob], registry=registry
        )

        listener.poll_once()

        assert len(notifier.sent) == 1
        recipients, subject, body = notifier.sent[0]
        assert recipients == ["bob@corp.com"]
        assert subject == ENROLLMENT_SUBJECT
        assert "https://minutes.corp.com/enroll?email=bob@corp.com" in body

    def test_debug_mode_routes_requests_to_bot(self, config, alice):
        listener, _, _, notifier = make_listener(
            replace(config, release=False), [Invitation("123456789", START)], attendees=[alice]
        )

        listener.poll_once()

        assert notifier.sent[0][0] == ["bot@corp.com"]
        assert "email=alice@corp.com" in notifier.sent[0][2]

    def test_mail_failure_does_not_block_scheduling(self, config, alice):
        listener, source, scheduler, _ = make_listener(
            config, [Invitation("123456789", START)], attendees=[alice], notifier=FakeNotifier(fail=True)
        )

        assert listener.poll_once() is not None
        assert len(scheduler.scheduled) == 1
        assert source.invitations == []

    def test_directory_failure_still_schedules(self, config):
        listener, _, scheduler, notifier = make_listener(
            config, [Invitation("123456789", START)], directory=FakeDirectory(error=RuntimeError("offline"))
        )

        listener.poll_once()

        assert len(scheduler.scheduled) == 1
        assert notifier.sent == []


class TestLoop:
    def test_start_and_stop(self, config):
        invitations = [Invitation("123456789", START), Invitation("987654321", START)]
        listener, source, scheduler, _ = make_listener(config, invitations)

        listener.start()
        deadline = time.monotonic() + 2
        while source.invitations and time.monotonic() < deadline:
            time.sleep(0.01)
        listener.stop()

        assert not listener.is_running
        assert [s["args"] for s in scheduler.scheduled] == [("123456789",), ("987654321",)]

    def test_poll_errors_do_not_stop_loop(self, config):
        class FlakySource(FakeInvitationSource):
            calls = 0

            def fetch(self):
                FlakySource.calls += 1
                if FlakySource.calls == 1:
                    raise ConnectionError("imap timeout")
                return super().fetch()

        source = FlakySource([Invitation("123456789", START)])
        scheduler = FakeScheduler()
        listener = InvitationListener(
            config, source, FakeDirectory(), VoiceprintRegistry(FakeMatcher()), FakeNotifier(), scheduler, workflow
        )

        listener.start()
        deadline = time.monotonic() + 2
        while not scheduler.scheduled and time.monotonic() < deadline:
            time.sleep(0.01)
        listener.stop()

        assert len(scheduler.scheduled) == 1
