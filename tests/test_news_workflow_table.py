import unittest

from schoolhub.core.errors import AuthorizationError, InvalidTransitionError
from schoolhub.core.identity import Principal
from schoolhub.models import NewsPostStatus
from schoolhub.services.news_workflow import TRANSITIONS, SideEffect, WorkflowAction, allowed_actions, authorize_transition


ADMIN = Principal(id=1, role='admin', name='Admin')
SUPER_ADMIN = Principal(id=9, role='super_admin', name='Principal')
AUTHOR = Principal(id=2, role='teacher', name='Kavya')
OTHER_TEACHER = Principal(id=3, role='teacher', name='Arjun')
PARENT = Principal(id=4, role='parent', name='Parent')


class NewsWorkflowTableTests(unittest.TestCase):
    def test_table_has_exactly_the_moderation_edges(self):
        edges = {(source.value, action.value, t.target.value) for (source, action), t in TRANSITIONS.items()}
        self.assertEqual(
            edges,
            {
                ('draft', 'submit', 'pending_review'),
                ('draft', 'publish', 'published'),
                ('pending_review', 'approve', 'approved'),
                ('pending_review', 'reject', 'rejected'),
                ('rejected', 'submit', 'pending_review'),
                ('approved', 'publish', 'published'),
                ('published', 'unpublish', 'unpublished'),
                ('unpublished', 'publish', 'published'),
            },
        )

    def test_allowed_actions_per_status(self):
        self.assertEqual(allowed_actions(NewsPostStatus.DRAFT), [WorkflowAction.SUBMIT, WorkflowAction.PUBLISH])
        self.assertEqual(allowed_actions(NewsPostStatus.PENDING_REVIEW), [WorkflowAction.APPROVE, WorkflowAction.REJECT])
        self.assertEqual(allowed_actions(NewsPostStatus.PUBLISHED), [WorkflowAction.UNPUBLISH])

    def test_author_submits_own_draft(self):
        transition = authorize_transition(status='draft', action='submit', principal=AUTHOR, author_id=2, author_role='teacher')
        self.assertEqual(transition.target, NewsPostStatus.PENDING_REVIEW)
        self.assertIn(SideEffect.SET_SUBMITTED_AT, transition.effects)

    def test_other_teacher_cannot_submit(self):
        with self.assertRaises(AuthorizationError):
            authorize_transition(status='draft', action='submit', principal=OTHER_TEACHER, author_id=2, author_role='teacher')

    def test_teacher_cannot_approve(self):
        with self.assertRaises(AuthorizationError):
            authorize_transition(status='pending_review', action='approve', principal=OTHER_TEACHER, author_id=2, author_role='teacher')

    def test_parent_cannot_submit(self):
        with self.assertRaises(AuthorizationError):
            authorize_transition(status='draft', action='submit', principal=PARENT, author_id=4, author_role='parent')

    def test_super_admin_moderates(self):
        transition = authorize_transition(status='pending_review', action='reject', principal=SUPER_ADMIN, author_id=2, author_role='teacher')
        self.assertEqual(transition.target, NewsPostStatus.REJECTED)
        self.assertIn(SideEffect.SET_REJECTION_REASON, transition.effects)

    def test_direct_publish_only_for_moderator_authored_drafts(self):
        transition = authorize_transition(status='draft', action='publish', principal=ADMIN, author_id=1, author_role='admin')
        self.assertEqual(transition.target, NewsPostStatus.PUBLISHED)
        with self.assertRaises(InvalidTransitionError):
            authorize_transition(status='draft', action='publish', principal=ADMIN, author_id=2, author_role='teacher')

    def test_off_table_actions_are_invalid_transitions(self):
        for status, action in (('draft', 'approve'), ('approved', 'reject'), ('published', 'submit'), ('unpublished', 'unpublish')):
            with self.subTest(status=status, action=action):
                with self.assertRaises(InvalidTransitionError) as ctx:
                    authorize_transition(status=status, action=action, principal=ADMIN, author_id=1, author_role='admin')
                self.assertEqual(ctx.exception.code, 'workflow/invalid-transition')

    def test_missing_edge_is_reported_before_role(self):
        with self.assertRaises(InvalidTransitionError):
            authorize_transition(status='draft', action='approve', principal=PARENT, author_id=2, author_role='teacher')


if __name__ == '__main__':
    unittest.main()
