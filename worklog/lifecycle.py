import logging
import math

from django.utils import timezone

from .exceptions import ConflictError, NotFoundError, ValidationError

logger = logging.getLogger('worklog')

TASK_NAME_MAX_LENGTH = 200


class SessionLifecycleManager:
    """
    Start, pause, resume and complete work sessions for one store.

    Elapsed time always runs from the session's original ``start_time``:
    resuming does not move it, so time spent paused is part of the final
    ``duration``.
    """

    def __init__(self, store, clock=timezone.now):
        self.store = store
        self.clock = clock

    def start(self, user_id, task_name):
        task_name = task_name.strip() if isinstance(task_name, str) else ''
        if not task_name:
            raise ValidationError('Task name is required.', errors={'task_name': ['This field is required.']})
        if len(task_name) > TASK_NAME_MAX_LENGTH:
            raise ValidationError(
                'Task name is too long.',
                errors={'task_name': [f'Ensure this value has at most {TASK_NAME_MAX_LENGTH} characters.']},
            )

        with self.store.user_lock(user_id):
            if self.store.get_active_work_session(user_id):
                logger.warning("User %s tried to start a session while one is active", user_id)
                raise ConflictError('There is already an active session')
            session = self.store.create_work_session(
                user_id=user_id,
                task_name=task_name,
                start_time=self.clock(),
                is_active=True,
            )
        logger.info("Session %s started for user %s", session.pk, user_id)
        return session

    def _get_owned_session(self, session_id, user_id):
        session = self.store.get_work_session(session_id)
        if session is None or str(session.user_id) != str(user_id):
            raise NotFoundError('Session not found')
        return session

    def pause(self, session_id, user_id):
        session = self._get_owned_session(session_id, user_id)
        session = self.store.update_work_session(session.pk, is_active=False)
        logger.info("Session %s paused", session.pk)
        return session

    def resume(self, session_id, user_id):
        with self.store.user_lock(user_id):
            session = self._get_owned_session(session_id, user_id)
            if session.end_time is not None:
                raise ConflictError('Session is already completed')
            active = self.store.get_active_work_session(user_id)
            if active is not None and active.pk != session.pk:
                logger.warning("User %s tried to resume %s while %s is active", user_id, session.pk, active.pk)
                raise ConflictError('There is already an active session')
            session = self.store.update_work_session(session.pk, is_active=True)
        logger.info("Session %s resumed", session.pk)
        return session

    def complete(self, session_id, user_id):
        session = self._get_owned_session(session_id, user_id)
        # Never end before the start, even if the clock stepped backwards.
        now = max(self.clock(), session.start_time)
        duration = math.floor((now - session.start_time).total_seconds())
        session = self.store.update_work_session(
            session.pk,
            end_time=now,
            duration=duration,
            is_active=False,
        )
        logger.info("Session %s completed after %s seconds", session.pk, duration)
        return session
