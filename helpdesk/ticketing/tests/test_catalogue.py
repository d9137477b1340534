from django.test import TestCase

from ticketing import catalogue
from ticketing.errors import AlreadyExists, Conflict, ValidationFailed
from ticketing.models import Category, CategoryField, FieldOption, Hostel, Subcategory

from .utils import make_student


class CatalogueTests(TestCase):
    def setUp(self):
        self.category = Category.objects.create(name='Hostel Maintenance', sla_hours=72)
        self.subcategory = Subcategory.objects.create(category=self.category, name='Plumbing')
        self.location = CategoryField.objects.create(
            subcategory=self.subcategory, name='Issue location', field_type='select', required=True,
        )

    def test_field_slug_from_name(self):
        self.assertEqual(self.location.slug, 'issue_location')

    def test_unique_slug(self):
        self.assertEqual(catalogue.unique_slug(Category, 'Hostel Maintenance'), 'hostel-maintenance-2')
        self.assertEqual(catalogue.unique_slug(Category, 'Mess'), 'mess')

    def test_save_field_with_valid_logic(self):
        field = CategoryField(
            subcategory=self.subcategory, name='Room number',
            validation={'dependsOn': 'issue_location', 'showWhenValue': 'Room'},
        )
        catalogue.save_field(field)
        self.assertEqual(field.slug, 'room_number')
        self.assertIsNotNone(field.pk)

    def test_save_field_rejects_unknown_dependency(self):
        field = CategoryField(subcategory=self.subcategory, name='Room', validation={'dependsOn': 'floor'})
        with self.assertRaises(ValidationFailed) as ctx:
            catalogue.save_field(field)
        self.assertEqual(ctx.exception.details['errors'], ["dependsOn refers to unknown field 'floor'"])

    def test_save_field_rejects_duplicate_slug(self):
        field = CategoryField(subcategory=self.subcategory, name='Issue Location')
        with self.assertRaises(AlreadyExists):
            catalogue.save_field(field)

    def test_replace_options_keeps_order(self):
        catalogue.replace_options(self.location, [{'label': 'Room'}, {'label': 'Washroom', 'value': 'washroom'}])
        catalogue.replace_options(self.location, [{'label': 'Corridor'}, {'label': 'Room'}])
        self.assertEqual(self.location.option_values(), ['Corridor', 'Room'])
        self.assertEqual(FieldOption.objects.filter(field=self.location).count(), 2)

    def test_option_needs_label(self):
        with self.assertRaises(ValidationFailed):
            catalogue.replace_options(self.location, [{'label': ' '}])

    def test_schema_skips_inactive(self):
        FieldOption.objects.create(field=self.location, label='Room', value='room')
        FieldOption.objects.create(field=self.location, label='Old', value='old', is_active=False)
        Subcategory.objects.create(category=self.category, name='Retired', is_active=False)

        schema = catalogue.category_schema(self.category)
        self.assertEqual(schema['sla_hours'], 72)
        self.assertEqual([s['name'] for s in schema['subcategories']], ['Plumbing'])
        field = schema['subcategories'][0]['fields'][0]
        self.assertEqual(field['slug'], 'issue_location')
        self.assertEqual(field['options'], [{'label': 'Room', 'value': 'room'}])

    def test_hierarchy_lists_active_categories(self):
        Category.objects.create(name='Archived', is_active=False)
        self.assertEqual([c.name for c in catalogue.active_hierarchy()], ['Hostel Maintenance'])


class MasterDataTests(TestCase):
    def test_referenced_master_data_cannot_be_deleted(self):
        hostel = Hostel.objects.create(name='Hostel A')
        make_student('resident', hostel=hostel)
        with self.assertRaises(Conflict):
            catalogue.delete_master(hostel)
        catalogue.soft_delete(hostel)
        hostel.refresh_from_db()
        self.assertFalse(hostel.is_active)

    def test_unused_master_data_is_deleted(self):
        hostel = Hostel.objects.create(name='Hostel B')
        catalogue.delete_master(hostel)
        self.assertFalse(Hostel.objects.filter(name='Hostel B').exists())
