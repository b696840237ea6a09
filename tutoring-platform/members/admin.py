from django.contrib import admin
from .models import (
    AdminMessage,
    Lecture,
    Meeting,
    MembershipRecord,
    Student,
    SubjectAssignment,
    Volunteer,
)


class SubjectAssignmentInline(admin.TabularInline):
    model = SubjectAssignment
    extra = 0


@admin.register(MembershipRecord)
class MembershipRecordAdmin(admin.ModelAdmin):
    list_display = ('email', 'name', 'status', 'volunteer_hours', 'created_at')
    list_filter = ('status',)
    search_fields = ('email', 'name')


@admin.register(Volunteer)
class VolunteerAdmin(admin.ModelAdmin):
    list_display = ('email', 'name', 'role', 'lecture_count', 'low_lecture_week_count', 'last_low_lecture_week')
    list_filter = ('role',)
    search_fields = ('email', 'name')


@admin.register(Student)
class StudentAdmin(admin.ModelAdmin):
    list_display = ('name', 'email', 'volunteer', 'grade')
    search_fields = ('name', 'email', 'volunteer__email')
    list_select_related = ('volunteer',)
    inlines = [SubjectAssignmentInline]


@admin.register(Lecture)
class LectureAdmin(admin.ModelAdmin):
    list_display = ('name', 'subject', 'student_email', 'volunteer', 'created_at')
    list_filter = ('subject',)
    search_fields = ('name', 'student_email', 'volunteer__email')
    date_hierarchy = 'created_at'


@admin.register(Meeting)
class MeetingAdmin(admin.ModelAdmin):
    list_display = ('title', 'volunteer', 'date', 'start_time', 'end_time', 'reminded')
    list_filter = ('reminded',)
    search_fields = ('title', 'volunteer__email')
    date_hierarchy = 'date'


@admin.register(AdminMessage)
class AdminMessageAdmin(admin.ModelAdmin):
    list_display = ('volunteer', 'display_until', 'created_at')
    search_fields = ('content', 'volunteer__email')
