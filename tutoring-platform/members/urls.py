from django.urls import path

from . import views

urlpatterns = [
    path('auth/login/', views.login_view, name='login'),
    path('auth/logout/', views.logout_view, name='logout'),
    path('profile/', views.profile, name='profile'),
    path('profile/password/', views.change_password, name='change_password'),
    path('profile/meetings/', views.meetings, name='meetings'),
    path('profile/meetings/<int:pk>/', views.meeting_detail, name='meeting_detail'),
    path('profile/meetings/<int:pk>/remind/', views.meeting_remind, name='meeting_remind'),
    path('join-requests/', views.join_requests, name='join_requests'),
    path('join-requests/<int:pk>/approve/', views.approve_join_request, name='approve_join_request'),
    path('join-requests/<int:pk>/reject/', views.reject_join_request, name='reject_join_request'),
    path('approved-members/', views.approved_members, name='approved_members'),
    path('members/<int:pk>/', views.member_detail, name='member_detail'),
    path('members/<int:pk>/add-student/', views.add_student, name='add_student'),
    path('members/<int:pk>/update-details/', views.update_member_details, name='update_member_details'),
    path('members/<int:pk>/messages/', views.member_messages, name='member_messages'),
    path(
        'members/<int:pk>/messages/<int:message_id>/',
        views.member_message_detail,
        name='member_message_detail',
    ),
    path('lectures/', views.add_lecture, name='add_lecture'),
    path('lectures/<int:pk>/', views.delete_lecture, name='delete_lecture'),
]
