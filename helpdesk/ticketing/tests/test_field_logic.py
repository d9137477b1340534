from types import SimpleNamespace

from django.test import SimpleTestCase

from ticketing.field_logic import (
    form_progress, is_filled, is_required, matches_rule_value, should_display, strip_profile_keys,
    validate_answers, validate_logic_rules, visible_fields,
)


def field(slug, field_type='text', required=False, options=None, **validation):
    return SimpleNamespace(
        slug=slug,
        name=slug.replace('_', ' ').title(),
        field_type=field_type,
        required=required,
        validation=validation,
        option_values=lambda: list(options or []),
    )


class RuleMatchingTests(SimpleTestCase):
    def test_matching_is_case_insensitive(self):
        self.assertTrue(matches_rule_value('hostel', 'Hostel'))

    def test_list_on_either_side(self):
        self.assertTrue(matches_rule_value(['wifi', 'lan'], 'LAN'))
        self.assertTrue(matches_rule_value('lan', ['wifi', 'lan']))
        self.assertFalse(matches_rule_value(['power'], ['wifi', 'lan']))

    def test_missing_rule_value_never_matches(self):
        self.assertFalse(matches_rule_value('anything', None))
        self.assertFalse(matches_rule_value(None, 'x'))


class DisplayTests(SimpleTestCase):
    def setUp(self):
        self.room = field('room_number', required=True, dependsOn='issue_location', showWhenValue='Hostel')
        self.block = field('block', dependsOn='issue_location', hideWhenValue=['Online', 'Remote'])

    def test_show_when_value(self):
        self.assertTrue(should_display(self.room, {'issue_location': 'hostel'}))
        self.assertFalse(should_display(self.room, {'issue_location': 'Academic'}))
        self.assertFalse(should_display(self.room, {}))

    def test_hide_when_value(self):
        self.assertFalse(should_display(self.block, {'issue_location': 'remote'}))
        self.assertTrue(should_display(self.block, {'issue_location': 'Hostel'}))

    def test_field_without_dependency_always_shows(self):
        self.assertTrue(should_display(field('title'), {}))

    def test_profile_dependency(self):
        mess = field('mess_name', dependsOn='profile.hostel', showWhenValue='Hostel A')
        self.assertTrue(should_display(mess, {}, {'hostel': 'Hostel A'}))
        self.assertFalse(should_display(mess, {'hostel': 'Hostel A'}, {'hostel': 'Hostel B'}))

    def test_visible_fields_keeps_order(self):
        fields = [field('issue_location'), self.room, self.block]
        visible = visible_fields(fields, {'issue_location': 'Online'})
        self.assertEqual([f.slug for f in visible], ['issue_location'])


class RequiredTests(SimpleTestCase):
    def test_required_when_value(self):
        reason = field('urgency_reason', dependsOn='urgency', requiredWhenValue=['High', 'Critical'])
        self.assertTrue(is_required(reason, {'urgency': 'critical'}))
        self.assertFalse(is_required(reason, {'urgency': 'low'}))

    def test_static_required_flag(self):
        self.assertTrue(is_required(field('title', required=True), {}))
        self.assertFalse(is_required(field('title'), {}))


class ValidateAnswersTests(SimpleTestCase):
    def test_hidden_required_field_is_skipped(self):
        fields = [
            field('issue_location', required=True),
            field('room_number', required=True, dependsOn='issue_location', showWhenValue='Hostel'),
        ]
        self.assertEqual(validate_answers(fields, {'issue_location': 'Library'}), {})

    def test_visible_required_field_reports_error(self):
        fields = [
            field('issue_location', required=True),
            field('room_number', required=True, dependsOn='issue_location', showWhenValue='Hostel'),
        ]
        errors = validate_answers(fields, {'issue_location': 'Hostel'})
        self.assertEqual(errors, {'room_number': 'Room Number is required'})

    def test_conditionally_required_field(self):
        fields = [
            field('urgency', 'select', options=['low', 'high']),
            field('urgency_reason', dependsOn='urgency', requiredWhenValue='high'),
        ]
        self.assertIn('urgency_reason', validate_answers(fields, {'urgency': 'high'}))
        self.assertEqual(validate_answers(fields, {'urgency': 'low'}), {})

    def test_select_rejects_unknown_option(self):
        fields = [field('device', 'select', options=['laptop', 'phone'])]
        self.assertEqual(validate_answers(fields, {'device': 'toaster'}), {'device': 'Device has an invalid option'})

    def test_multi_select_needs_a_list(self):
        fields = [field('rooms', 'multi_select', required=True, options=['101', '102'])]
        self.assertEqual(validate_answers(fields, {'rooms': ['101']}), {})
        self.assertIn('must be a list', validate_answers(fields, {'rooms': '101'})['rooms'])
        self.assertIn('invalid option', validate_answers(fields, {'rooms': ['999']})['rooms'])

    def test_empty_multi_select_counts_as_missing(self):
        fields = [field('rooms', 'multi_select', required=True, options=['101'])]
        self.assertEqual(validate_answers(fields, {'rooms': []}), {'rooms': 'Rooms is required'})

    def test_text_constraints(self):
        fields = [field('roll_no', minLength=3, maxLength=6, pattern=r'^\d+$')]
        self.assertIn('at least 3', validate_answers(fields, {'roll_no': '12'})['roll_no'])
        self.assertIn('at most 6', validate_answers(fields, {'roll_no': '1234567'})['roll_no'])
        self.assertIn('expected format', validate_answers(fields, {'roll_no': '12a4'})['roll_no'])
        self.assertEqual(validate_answers(fields, {'roll_no': '1234'}), {})

    def test_custom_error_message(self):
        fields = [field('phone', pattern=r'^\d{10}$', errorMessage='Enter a 10 digit number')]
        self.assertEqual(validate_answers(fields, {'phone': '123'}), {'phone': 'Enter a 10 digit number'})

    def test_number_bounds(self):
        fields = [field('floor', 'number', min=0, max=10)]
        self.assertEqual(validate_answers(fields, {'floor': '3'}), {})
        self.assertIn('at most 10', validate_answers(fields, {'floor': 12})['floor'])
        self.assertIn('must be a number', validate_answers(fields, {'floor': 'ground'})['floor'])

    def test_date_must_parse(self):
        fields = [field('noticed_on', 'date')]
        self.assertEqual(validate_answers(fields, {'noticed_on': '2024-06-10'}), {})
        self.assertIn('valid date', validate_answers(fields, {'noticed_on': '10/06/2024'})['noticed_on'])

    def test_boolean_false_is_an_answer(self):
        fields = [field('recurring', 'boolean', required=True)]
        self.assertEqual(validate_answers(fields, {'recurring': False}), {})


class ProgressTests(SimpleTestCase):
    def test_progress_counts_required_visible_fields(self):
        fields = [
            field('issue_location', required=True),
            field('room_number', required=True, dependsOn='issue_location', showWhenValue='Hostel'),
            field('notes'),
        ]
        self.assertEqual(form_progress(fields, {'issue_location': 'Hostel'}), 50)
        self.assertEqual(form_progress(fields, {'issue_location': 'Library'}), 100)

    def test_base_items_are_included(self):
        fields = [field('issue_location', required=True)]
        self.assertEqual(form_progress(fields, {}, base_items=1, base_filled=1), 50)

    def test_no_required_items(self):
        self.assertEqual(form_progress([field('notes')], {}), 100)


class LogicRuleCheckTests(SimpleTestCase):
    def test_self_dependency_is_rejected(self):
        problems = validate_logic_rules('room', {'dependsOn': 'room', 'showWhenValue': 'x'}, {'location'})
        self.assertEqual(problems, ["A field cannot depend on itself"])

    def test_unknown_sibling_is_rejected(self):
        problems = validate_logic_rules('room', {'dependsOn': 'where'}, {'location'})
        self.assertEqual(problems, ["dependsOn refers to unknown field 'where'"])

    def test_profile_dependency_is_allowed(self):
        self.assertEqual(validate_logic_rules('room', {'dependsOn': 'profile.hostel'}, set()), [])

    def test_required_when_value_needs_depends_on(self):
        self.assertEqual(
            validate_logic_rules('room', {'requiredWhenValue': 'x'}, set()),
            ["requiredWhenValue needs dependsOn"],
        )

    def test_strip_profile_keys(self):
        answers = {'hostel': 'Hostel A', 'room_number': '12', 'device': 'laptop'}
        self.assertEqual(strip_profile_keys(answers), {'device': 'laptop'})

    def test_strip_profile_keys_keeps_field_slugs(self):
        answers = {'department': 'CSE', 'room': 'B-12', 'phone': '98765'}
        self.assertEqual(strip_profile_keys(answers, ['department', 'room']), {'department': 'CSE', 'room': 'B-12'})

    def test_boolean_answer_must_be_a_real_boolean(self):
        consent = field('consent', 'boolean')
        self.assertTrue(is_filled(consent, False))
        self.assertTrue(is_filled(consent, 'true'))
        self.assertFalse(is_filled(consent, 1))
        self.assertFalse(is_filled(consent, 0))
