from django import forms
from django.contrib.auth.forms import UserCreationForm
from django.contrib.auth.models import User

from .constants import PRIORITY_CHOICES, STATUS_CHOICES, STAFF_ROLES
from .models import Category, Committee, Subcategory


class TicketForm(forms.Form):
    category = forms.ModelChoiceField(queryset=Category.objects.filter(is_active=True))
    subcategory = forms.ModelChoiceField(queryset=Subcategory.objects.filter(is_active=True), required=False)
    title = forms.CharField(max_length=255, required=False)
    description = forms.CharField(widget=forms.Textarea(attrs={'rows': 4}))
    location = forms.CharField(max_length=255, required=False)
    priority = forms.ChoiceField(choices=PRIORITY_CHOICES, initial='medium')

    def clean(self):
        cleaned = super().clean()
        category = cleaned.get('category')
        subcategory = cleaned.get('subcategory')
        if category and subcategory and subcategory.category_id != category.pk:
            self.add_error('subcategory', "Pick a subcategory of the selected category.")
        return cleaned


def field_answers(post, fields):
    """Read dynamic field answers posted as ``field_<slug>`` inputs."""
    answers = {}
    for field in fields:
        key = f'field_{field.slug}'
        if field.is_multi_select:
            values = post.getlist(key)
            if values:
                answers[field.slug] = values
        elif field.field_type == 'boolean':
            if key in post:
                answers[field.slug] = post.get(key) in ('on', 'true', '1', 'yes')
        elif post.get(key, '') != '':
            answers[field.slug] = post.get(key)
    return answers


class CommentForm(forms.Form):
    text = forms.CharField(widget=forms.Textarea(attrs={'rows': 3, 'placeholder': 'Add your comment here...'}))
    is_internal = forms.BooleanField(required=False)


class AttachmentForm(forms.Form):
    file = forms.FileField()


class StatusForm(forms.Form):
    status = forms.ChoiceField(choices=STATUS_CHOICES)
    comment = forms.CharField(widget=forms.Textarea(attrs={'rows': 2}), required=False)


class TicketAssignForm(forms.Form):
    assigned_to = forms.ModelChoiceField(queryset=User.objects.none())
    note = forms.CharField(required=False)

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        # Only staff can work tickets
        self.fields['assigned_to'].queryset = User.objects.filter(
            is_active=True, profile__role__in=STAFF_ROLES,
        ).order_by('first_name', 'username')


class ReasonForm(forms.Form):
    reason = forms.CharField(widget=forms.Textarea(attrs={'rows': 2}), required=False)


class SetTatForm(forms.Form):
    tat = forms.CharField(help_text="e.g. 4h, 2 days, 1 week")
    mark_in_progress = forms.BooleanField(required=False)


class ExtendTatForm(forms.Form):
    hours = forms.FloatField(min_value=0.5)
    reason = forms.CharField(required=False)


class FeedbackForm(forms.Form):
    rating = forms.IntegerField(min_value=1, max_value=5)
    feedback = forms.CharField(widget=forms.Textarea(attrs={'rows': 3}), required=False)


class CommitteeTagForm(forms.Form):
    committee = forms.ModelChoiceField(queryset=Committee.objects.filter(is_active=True))
    reason = forms.CharField(required=False)


class StudentProfileForm(forms.Form):
    mobile = forms.CharField(max_length=20, required=False)
    room_no = forms.CharField(max_length=20, required=False)


class StudentUploadForm(forms.Form):
    file = forms.FileField(help_text="CSV file using the student template columns")


class RegisterForm(UserCreationForm):
    email = forms.EmailField(required=True)

    class Meta(UserCreationForm.Meta):
        model = User
        fields = ('username', 'email', 'first_name', 'last_name')

    def clean_email(self):
        email = self.cleaned_data['email'].strip().lower()
        if User.objects.filter(email__iexact=email).exists():
            raise forms.ValidationError("An account with this email already exists.")
        return email
