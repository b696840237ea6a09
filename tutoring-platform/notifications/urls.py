from django.urls import path

from . import views

urlpatterns = [
    path('', views.notification_list, name='notification_list'),
    path('mark-read/', views.mark_read, name='notification_mark_read'),
    path('<int:pk>/', views.delete_notification, name='notification_delete'),
]
