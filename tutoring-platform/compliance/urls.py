from django.urls import path

from . import views

urlpatterns = [
    path('low-lecture-members/', views.low_lecture_members, name='low_lecture_members'),
]
